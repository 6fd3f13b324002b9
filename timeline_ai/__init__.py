"""Timeline AI - orchestration core for the video editor's AI features.

This service routes chat requests across model providers and runs
content-production pipelines:
- Provider backends (Claude, OpenAI, DeepSeek, local Ollama)
- Context window trimming, stream decoding, response caching
- Dependency-ordered workflows and chunked batch jobs
"""

__version__ = "0.1.0"
