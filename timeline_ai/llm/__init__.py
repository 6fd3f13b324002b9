"""Provider-agnostic LLM access: backends, routing, caching, context fitting.

Import from the submodules directly (schemas, router, backends, ...).
"""
