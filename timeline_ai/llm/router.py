"""Provider router and resilient dispatcher.

dispatch() flow:
1. Fingerprint the request; a live cache entry is returned without any
   remote call.
2. Candidates = [model_id, *options.fallback_model_ids].
3. Each candidate gets options.retry_attempts_per_model attempts with
   linear backoff between attempts (1s, 2s, ...). A missing credential
   skips straight to the next candidate. Cancellation is never retried.
4. When every candidate is exhausted, AllProvidersExhaustedError is raised,
   chained to the last failure.

Streaming dispatch has no retry or fallback layer: it resolves the backend
and forwards, errors reaching the caller through callbacks.on_error.
"""

import logging
import time
from typing import Optional, Sequence

from timeline_ai.llm.backends import ProviderBackend
from timeline_ai.llm.cache import ResponseCache, request_fingerprint
from timeline_ai.llm.context_window import (
    DEFAULT_RESERVED_REPLY_TOKENS,
    ContextWindowManager,
)
from timeline_ai.llm.errors import (
    AllProvidersExhaustedError,
    CredentialMissingError,
    ProviderError,
)
from timeline_ai.llm.factory import resolve_provider
from timeline_ai.llm.schemas import (
    DispatchResult,
    Message,
    ModelDescriptor,
    ProviderKind,
    RequestOptions,
    StreamCallbacks,
)
from timeline_ai.model_catalog.registry import ModelCatalog

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 1.0
LOCAL_MODEL_CONTEXT_TOKENS = 2048


class ProviderRouter:
    """Routes requests to provider backends with caching, retry and fallback."""

    def __init__(
        self,
        backends: dict[ProviderKind, ProviderBackend],
        catalog: Optional[ModelCatalog] = None,
        cache: Optional[ResponseCache] = None,
        context_window: Optional[ContextWindowManager] = None,
    ):
        self._backends = dict(backends)
        self._catalog = catalog if catalog is not None else ModelCatalog()
        self._cache = cache if cache is not None else ResponseCache()
        self._context_window = context_window or ContextWindowManager(self._catalog)

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    def resolve_provider(self, model_id: str) -> ProviderKind:
        return resolve_provider(model_id, self._catalog)

    def _backend_for(self, kind: ProviderKind, model_id: str) -> ProviderBackend:
        backend = self._backends.get(kind)
        if backend is None:
            raise ProviderError(
                f"No backend configured for provider '{kind.value}'",
                provider=kind.value,
                model_id=model_id,
            )
        return backend

    def _fit_history(
        self, model_id: str, messages: Sequence[Message], options: RequestOptions
    ) -> list[Message]:
        if not options.apply_context_window:
            return list(messages)
        return self._context_window.compress(
            messages,
            model_id,
            reserved_reply_tokens=options.max_tokens or DEFAULT_RESERVED_REPLY_TOKENS,
        )

    def dispatch(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: Optional[RequestOptions] = None,
    ) -> DispatchResult:
        """Send a chat request, falling back across candidate models."""
        options = options or RequestOptions()
        start_time = time.time()

        fingerprint = request_fingerprint(model_id, messages, options)
        cached = self._cache.get(fingerprint)
        if cached is not None:
            logger.info(f"[{model_id}] Cache hit ({fingerprint[:12]})")
            return cached.model_copy(
                deep=True,
                update={
                    "cached": True,
                    "response_time_ms": int((time.time() - start_time) * 1000),
                }
            )

        candidates = [model_id, *options.fallback_model_ids]
        max_attempts = options.retry_attempts_per_model
        attempts: list[tuple[str, Exception]] = []

        for candidate in candidates:
            kind = self.resolve_provider(candidate)

            for attempt in range(max_attempts):
                try:
                    backend = self._backend_for(kind, candidate)
                    history = self._fit_history(candidate, messages, options)
                    reply = backend.send_request(candidate, history, options)
                except InterruptedError:
                    raise
                except CredentialMissingError as e:
                    attempts.append((candidate, e))
                    logger.warning(f"[{candidate}] {e}; skipping to next candidate")
                    break
                except Exception as e:
                    attempts.append((candidate, e))
                    logger.warning(
                        f"[{candidate}] Attempt {attempt + 1}/{max_attempts} failed: {e}"
                    )
                    if attempt < max_attempts - 1:
                        delay = RETRY_BACKOFF_SECONDS * (attempt + 1)
                        logger.info(f"[{candidate}] Retrying in {delay:.0f}s")
                        time.sleep(delay)
                    continue

                result = DispatchResult(
                    content=reply.content,
                    model_id=candidate,
                    provider_kind=kind,
                    usage=reply.usage,
                    response_time_ms=int((time.time() - start_time) * 1000),
                )
                self._cache.put(fingerprint, result)
                if candidate != model_id:
                    logger.info(f"[{model_id}] Served by fallback model {candidate}")
                return result.model_copy(deep=True)

        last_error = attempts[-1][1] if attempts else None
        tried = ", ".join(candidates)
        message = f"All models unavailable (tried: {tried})"
        if last_error is not None:
            message += f". Last error: {last_error}"
        logger.error(f"[{model_id}] {message}")
        raise AllProvidersExhaustedError(message, attempts=attempts) from last_error

    def dispatch_streaming(
        self,
        model_id: str,
        messages: Sequence[Message],
        callbacks: StreamCallbacks,
        options: Optional[RequestOptions] = None,
    ) -> str:
        """Stream a reply from the resolved backend. Returns the full content."""
        options = options or RequestOptions()
        kind = self.resolve_provider(model_id)
        try:
            backend = self._backend_for(kind, model_id)
        except ProviderError as e:
            callbacks.emit_error(e)
            raise

        history = self._fit_history(model_id, messages, options)
        logger.info(f"[{model_id}] Streaming via {kind.value}")
        return backend.send_streaming_request(model_id, history, options, callbacks)

    def is_model_available(self, model_id: str) -> bool:
        kind = self.resolve_provider(model_id)
        backend = self._backends.get(kind)
        if backend is None or not backend.is_available():
            return False
        if kind != ProviderKind.OLLAMA:
            return True
        return any(
            descriptor.id == model_id for descriptor in self._discover_local_models()
        )

    def _discover_local_models(self) -> list[ModelDescriptor]:
        # Listing only; never written back to the catalog the context window reads
        backend = self._backends.get(ProviderKind.OLLAMA)
        if backend is None or not hasattr(backend, "list_installed_models"):
            return []
        try:
            installed = backend.list_installed_models()
        except ProviderError as e:
            logger.info(f"Local model discovery failed: {e}")
            return []

        discovered = []
        for model in installed:
            descriptor = ModelDescriptor(
                id=model.name,
                name=model.name,
                provider_kind=ProviderKind.OLLAMA,
                description=f"{model.name} ({model.parameter_size})",
                is_local=True,
                max_context_tokens=LOCAL_MODEL_CONTEXT_TOKENS,
            )
            discovered.append(descriptor)
        return discovered

    def get_available_models(self) -> list[ModelDescriptor]:
        """Static models whose provider has credentials, plus local models."""
        models = []
        for descriptor in self._catalog.list_all():
            if descriptor.is_local:
                continue
            backend = self._backends.get(descriptor.provider_kind)
            if backend is not None and backend.has_credential():
                models.append(descriptor)
        models.extend(self._discover_local_models())
        return models

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Response cache cleared")

    def cache_stats(self) -> dict:
        return self._cache.stats()
