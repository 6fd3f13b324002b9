"""Static catalog of known models and their context limits."""
