"""Provider resolution and backend construction.

Model ids resolve to a ProviderKind once, at the router boundary: a catalog
lookup first, then prefix matching. Everything downstream switches on the
enum.
"""

import logging
from typing import Optional

from timeline_ai.llm.backends import (
    DEEPSEEK_BASE_URL,
    OPENAI_BASE_URL,
    ClaudeBackend,
    CompletionAPIBackend,
    OllamaBackend,
    ProviderBackend,
)
from timeline_ai.llm.credentials import CredentialSource
from timeline_ai.llm.schemas import ProviderKind
from timeline_ai.model_catalog.registry import ModelCatalog

logger = logging.getLogger(__name__)

# Checked in order; anything unmatched is served by the local server
PROVIDER_PREFIXES: list[tuple[tuple[str, ...], ProviderKind]] = [
    (("claude",), ProviderKind.CLAUDE),
    (("gpt", "o3"), ProviderKind.OPENAI),
    (("deepseek",), ProviderKind.DEEPSEEK),
]


def resolve_provider(model_id: str, catalog: Optional[ModelCatalog] = None) -> ProviderKind:
    """Map a model id to the provider that serves it.

    Args:
        model_id: e.g. 'claude-4-sonnet', 'gpt-4o', 'deepseek-chat', 'llama3:8b'
        catalog: Known models; consulted before prefix matching

    Returns:
        The ProviderKind for the model
    """
    if catalog is not None:
        descriptor = catalog.get(model_id)
        if descriptor is not None:
            return descriptor.provider_kind

    lowered = model_id.lower()
    for prefixes, kind in PROVIDER_PREFIXES:
        if lowered.startswith(prefixes):
            return kind
    return ProviderKind.OLLAMA


def build_default_backends(credentials: CredentialSource) -> dict[ProviderKind, ProviderBackend]:
    """One backend per provider kind, each with its own transport."""
    backends: dict[ProviderKind, ProviderBackend] = {
        ProviderKind.CLAUDE: ClaudeBackend(credentials),
        ProviderKind.OPENAI: CompletionAPIBackend(
            ProviderKind.OPENAI, credentials, base_url=OPENAI_BASE_URL, api_label="OpenAI"
        ),
        ProviderKind.DEEPSEEK: CompletionAPIBackend(
            ProviderKind.DEEPSEEK, credentials, base_url=DEEPSEEK_BASE_URL, api_label="DeepSeek"
        ),
        ProviderKind.OLLAMA: OllamaBackend(),
    }
    logger.info(f"Configured backends: {', '.join(k.value for k in backends)}")
    return backends
