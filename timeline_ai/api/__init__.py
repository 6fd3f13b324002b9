"""HTTP API for the orchestration core."""
