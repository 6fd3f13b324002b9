"""Credential lookup for cloud providers.

The core never persists secrets. A CredentialSource answers
get_credential(kind) with the secret or None; CachedCredentials remembers
successful lookups so the source is consulted once per provider.
"""

import logging
import os
import threading
from typing import Optional, Protocol, runtime_checkable

from timeline_ai.llm.schemas import ProviderKind

logger = logging.getLogger(__name__)

CREDENTIAL_ENV_VARS: dict[ProviderKind, str] = {
    ProviderKind.CLAUDE: "ANTHROPIC_API_KEY",
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.DEEPSEEK: "DEEPSEEK_API_KEY",
}


@runtime_checkable
class CredentialSource(Protocol):
    def get_credential(self, kind: ProviderKind) -> Optional[str]: ...


class EnvCredentialSource:
    """Reads API keys from environment variables."""

    def __init__(self, env_vars: Optional[dict[ProviderKind, str]] = None):
        self._env_vars = env_vars or CREDENTIAL_ENV_VARS

    def get_credential(self, kind: ProviderKind) -> Optional[str]:
        env_var = self._env_vars.get(kind)
        if not env_var:
            return None
        value = os.environ.get(env_var, "").strip()
        return value or None


class CachedCredentials:
    """Caches secrets from another source after the first successful fetch.

    Absent secrets are not cached, so a key added later is picked up.
    """

    def __init__(self, source: CredentialSource):
        self._source = source
        self._cache: dict[ProviderKind, str] = {}
        self._lock = threading.Lock()

    def get_credential(self, kind: ProviderKind) -> Optional[str]:
        with self._lock:
            cached = self._cache.get(kind)
        if cached is not None:
            return cached

        secret = self._source.get_credential(kind)
        if secret:
            with self._lock:
                self._cache[kind] = secret
            logger.debug(f"Cached credential for {kind.value}")
        return secret

    def update_cache(self, kind: ProviderKind, secret: str) -> None:
        """Replace a cached secret (e.g. after the user edits a key)."""
        with self._lock:
            self._cache[kind] = secret

    def invalidate(self, kind: Optional[ProviderKind] = None) -> None:
        with self._lock:
            if kind is None:
                self._cache.clear()
            else:
                self._cache.pop(kind, None)
