"""Provider backends for multi-model support.

Each backend owns exactly one transport (one base URL, one auth scheme) and
translates the provider-agnostic request shape into its wire format:

- ClaudeBackend: cloud messages API via the anthropic SDK
- CompletionAPIBackend: cloud chat-completions API over httpx
  (OpenAI, and DeepSeek which speaks the same protocol)
- OllamaBackend: local inference server over httpx

Backends do not retry; the router owns retry and fallback. Non-streaming
failures raise typed errors carrying the upstream status and body.
Streaming failures are reported to callbacks.on_error before being raised.
"""

import logging
import os
import threading
import time
from typing import Any, Callable, Optional, Protocol, Sequence, TypeVar, runtime_checkable

import anthropic
import httpx

from timeline_ai.llm.credentials import CredentialSource
from timeline_ai.llm.errors import (
    CredentialMissingError,
    ProviderError,
    ProviderTransportError,
    StreamCancelledError,
    UpstreamError,
)
from timeline_ai.llm.schemas import (
    CompletionReply,
    InstalledModel,
    Message,
    MessageRole,
    ProviderKind,
    RequestOptions,
    StreamCallbacks,
    Usage,
)
from timeline_ai.llm.streaming import (
    HttpxStreamReader,
    decode_event_stream,
    decode_ndjson_stream,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ANTHROPIC_BASE_URL = os.environ.get("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
DEEPSEEK_BASE_URL = os.environ.get("DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1")
OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")

# Shared request defaults
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TIMEOUT = httpx.Timeout(connect=30.0, read=300.0, write=60.0, pool=30.0)
AVAILABILITY_TIMEOUT = 5.0

# Local inference sampling options
OLLAMA_TOP_K = 40
OLLAMA_TOP_P = 0.9
OLLAMA_REPEAT_PENALTY = 1.1
OLLAMA_NUM_CTX = 2048


@runtime_checkable
class ProviderBackend(Protocol):
    """Protocol for provider backend implementations."""

    @property
    def provider_kind(self) -> ProviderKind: ...

    def has_credential(self) -> bool: ...

    def is_available(self) -> bool: ...

    def send_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
    ) -> CompletionReply: ...

    def send_streaming_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
        callbacks: StreamCallbacks,
    ) -> str: ...


def _request_timeout(options: RequestOptions) -> httpx.Timeout:
    if options.timeout_ms:
        return httpx.Timeout(options.timeout_ms / 1000)
    return DEFAULT_TIMEOUT


def _wire_messages(messages: Sequence[Message]) -> list[dict[str, str]]:
    return [{"role": m.role.value, "content": m.content} for m in messages]


def _raise_for_status(
    response: httpx.Response, api_label: str, provider: ProviderKind, model_id: str
) -> None:
    if response.is_success:
        return
    body = response.text
    raise UpstreamError(
        f"{api_label} API error: {response.status_code} {body}",
        status_code=response.status_code,
        body=body,
        provider=provider.value,
        model_id=model_id,
    )


def _stream_with_error_sink(
    callbacks: StreamCallbacks,
    provider: ProviderKind,
    model_id: str,
    run: Callable[[], T],
) -> T:
    """Run a streaming call, routing every failure through callbacks.on_error."""
    try:
        if callbacks.is_cancelled():
            raise StreamCancelledError(f"[{model_id}] Stream cancelled before start")
        return run()
    except (ProviderError, StreamCancelledError) as e:
        logger.warning(f"[{model_id}] Stream failed: {e}")
        callbacks.emit_error(e)
        raise
    except httpx.TransportError as e:
        error = ProviderTransportError(
            f"{provider.value} stream transport error: {e}",
            provider=provider.value,
            model_id=model_id,
        )
        logger.warning(f"[{model_id}] Stream failed: {error}")
        callbacks.emit_error(error)
        raise error from e


class ClaudeBackend:
    """Anthropic messages API backend.

    System-role messages are lifted into the `system` parameter; the rest
    are sent in order. SDK retries are disabled.
    """

    def __init__(
        self,
        credentials: CredentialSource,
        base_url: str = ANTHROPIC_BASE_URL,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        self._credentials = credentials
        self.base_url = base_url
        self._client_factory = client_factory or self._default_client
        self._client: Any = None
        self._client_key: Optional[str] = None
        self._client_lock = threading.Lock()

    @property
    def provider_kind(self) -> ProviderKind:
        return ProviderKind.CLAUDE

    def _default_client(self, api_key: str) -> anthropic.Anthropic:
        return anthropic.Anthropic(
            api_key=api_key,
            base_url=self.base_url,
            max_retries=0,
            timeout=DEFAULT_TIMEOUT,
        )

    def _get_client(self, model_id: str) -> Any:
        api_key = self._credentials.get_credential(ProviderKind.CLAUDE)
        if not api_key:
            raise CredentialMissingError(
                "Claude API key not set",
                provider=ProviderKind.CLAUDE.value,
                model_id=model_id,
            )
        with self._client_lock:
            if self._client is None or self._client_key != api_key:
                self._client = self._client_factory(api_key)
                self._client_key = api_key
            return self._client

    def has_credential(self) -> bool:
        return bool(self._credentials.get_credential(ProviderKind.CLAUDE))

    def is_available(self) -> bool:
        return self.has_credential()

    def _build_kwargs(
        self, model_id: str, messages: Sequence[Message], options: RequestOptions
    ) -> dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == MessageRole.SYSTEM]
        kwargs: dict[str, Any] = {
            "model": model_id,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "messages": _wire_messages(
                [m for m in messages if m.role != MessageRole.SYSTEM]
            ),
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if options.timeout_ms:
            kwargs["timeout"] = options.timeout_ms / 1000
        return kwargs

    def _translate_error(self, error: Exception, model_id: str) -> ProviderError:
        if isinstance(error, anthropic.APIStatusError):
            body = str(error.body) if error.body is not None else error.message
            return UpstreamError(
                f"Claude API error: {error.status_code} {body}",
                status_code=error.status_code,
                body=body,
                provider=ProviderKind.CLAUDE.value,
                model_id=model_id,
            )
        return ProviderTransportError(
            f"Claude request failed: {error}",
            provider=ProviderKind.CLAUDE.value,
            model_id=model_id,
        )

    def send_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
    ) -> CompletionReply:
        client = self._get_client(model_id)
        kwargs = self._build_kwargs(model_id, messages, options)
        start_time = time.time()

        try:
            response = client.messages.create(**kwargs)
        except (anthropic.APIStatusError, anthropic.APIConnectionError) as e:
            raise self._translate_error(e, model_id) from e

        content = "".join(
            block.text for block in response.content if hasattr(block, "text")
        )
        usage = None
        if getattr(response, "usage", None) is not None:
            usage = Usage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )

        logger.info(
            f"[{model_id}] Claude call completed in "
            f"{int((time.time() - start_time) * 1000)}ms, {len(content)} chars"
        )
        return CompletionReply(content=content, usage=usage)

    def send_streaming_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
        callbacks: StreamCallbacks,
    ) -> str:
        def run() -> str:
            client = self._get_client(model_id)
            kwargs = self._build_kwargs(model_id, messages, options)
            parts: list[str] = []
            try:
                with client.messages.stream(**kwargs) as stream:
                    for text in stream.text_stream:
                        if callbacks.is_cancelled():
                            raise StreamCancelledError(
                                f"[{model_id}] Stream cancelled by caller"
                            )
                        if text:
                            parts.append(text)
                            callbacks.emit_content(text)
            except (anthropic.APIStatusError, anthropic.APIConnectionError) as e:
                raise self._translate_error(e, model_id) from e
            full = "".join(parts)
            callbacks.emit_complete(full)
            return full

        return _stream_with_error_sink(callbacks, ProviderKind.CLAUDE, model_id, run)


class CompletionAPIBackend:
    """Chat-completions API backend (bearer auth, `choices[0].message.content`)."""

    def __init__(
        self,
        provider_kind: ProviderKind,
        credentials: CredentialSource,
        base_url: str,
        api_label: str,
        http_client: Optional[httpx.Client] = None,
    ):
        self._provider_kind = provider_kind
        self._credentials = credentials
        self.base_url = base_url
        self.api_label = api_label
        self._client = http_client or httpx.Client(base_url=base_url, timeout=DEFAULT_TIMEOUT)

    @property
    def provider_kind(self) -> ProviderKind:
        return self._provider_kind

    def has_credential(self) -> bool:
        return bool(self._credentials.get_credential(self._provider_kind))

    def is_available(self) -> bool:
        return self.has_credential()

    def _headers(self, model_id: str) -> dict[str, str]:
        api_key = self._credentials.get_credential(self._provider_kind)
        if not api_key:
            raise CredentialMissingError(
                f"{self.api_label} API key not set",
                provider=self._provider_kind.value,
                model_id=model_id,
            )
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _body(
        self, model_id: str, messages: Sequence[Message], options: RequestOptions, stream: bool
    ) -> dict[str, Any]:
        return {
            "model": model_id,
            "messages": _wire_messages(messages),
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": stream,
        }

    def send_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
    ) -> CompletionReply:
        headers = self._headers(model_id)
        start_time = time.time()
        try:
            response = self._client.post(
                "/chat/completions",
                json=self._body(model_id, messages, options, stream=False),
                headers=headers,
                timeout=_request_timeout(options),
            )
        except httpx.TransportError as e:
            raise ProviderTransportError(
                f"{self.api_label} request failed: {e}",
                provider=self._provider_kind.value,
                model_id=model_id,
            ) from e

        _raise_for_status(response, self.api_label, self._provider_kind, model_id)

        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                f"{self.api_label} returned an unexpected response shape: {e}",
                provider=self._provider_kind.value,
                model_id=model_id,
            ) from e

        usage = None
        if isinstance(data.get("usage"), dict):
            usage = Usage(**{
                k: data["usage"][k]
                for k in ("prompt_tokens", "completion_tokens", "total_tokens")
                if k in data["usage"]
            })

        logger.info(
            f"[{model_id}] {self.api_label} call completed in "
            f"{int((time.time() - start_time) * 1000)}ms, {len(content)} chars"
        )
        return CompletionReply(content=content, usage=usage)

    def send_streaming_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
        callbacks: StreamCallbacks,
    ) -> str:
        def run() -> str:
            request = self._client.build_request(
                "POST",
                "/chat/completions",
                json=self._body(model_id, messages, options, stream=True),
                headers=self._headers(model_id),
                timeout=_request_timeout(options),
            )
            response = self._client.send(request, stream=True)
            if not response.is_success:
                try:
                    response.read()
                finally:
                    response.close()
                _raise_for_status(response, self.api_label, self._provider_kind, model_id)
            return decode_event_stream(HttpxStreamReader(response), callbacks, label=model_id)

        return _stream_with_error_sink(callbacks, self._provider_kind, model_id, run)


class OllamaBackend:
    """Local inference server backend (no credentials, NDJSON streaming)."""

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url
        self._client = http_client or httpx.Client(base_url=base_url, timeout=DEFAULT_TIMEOUT)

    @property
    def provider_kind(self) -> ProviderKind:
        return ProviderKind.OLLAMA

    def has_credential(self) -> bool:
        return True

    def is_available(self) -> bool:
        try:
            response = self._client.get("/api/tags", timeout=AVAILABILITY_TIMEOUT)
        except httpx.HTTPError as e:
            logger.debug(f"Ollama not reachable at {self.base_url}: {e}")
            return False
        return response.is_success

    def _ensure_available(self, model_id: str) -> None:
        if not self.is_available():
            raise ProviderTransportError(
                f"Ollama server unavailable. Make sure Ollama is running on {self.base_url}",
                provider=ProviderKind.OLLAMA.value,
                model_id=model_id,
            )

    def _body(
        self, model_id: str, messages: Sequence[Message], options: RequestOptions, stream: bool
    ) -> dict[str, Any]:
        sampling: dict[str, Any] = {
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "top_k": OLLAMA_TOP_K,
            "top_p": OLLAMA_TOP_P,
            "repeat_penalty": OLLAMA_REPEAT_PENALTY,
            "num_ctx": OLLAMA_NUM_CTX,
        }
        if options.max_tokens:
            sampling["num_predict"] = options.max_tokens
        return {
            "model": model_id,
            "messages": _wire_messages(messages),
            "stream": stream,
            "options": sampling,
        }

    def send_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
    ) -> CompletionReply:
        self._ensure_available(model_id)
        start_time = time.time()
        try:
            response = self._client.post(
                "/api/chat",
                json=self._body(model_id, messages, options, stream=False),
                timeout=_request_timeout(options),
            )
        except httpx.TransportError as e:
            raise ProviderTransportError(
                f"Ollama request failed: {e}",
                provider=ProviderKind.OLLAMA.value,
                model_id=model_id,
            ) from e

        _raise_for_status(response, "Ollama", ProviderKind.OLLAMA, model_id)

        data = response.json()
        content = (data.get("message") or {}).get("content") or ""
        prompt_tokens = data.get("prompt_eval_count", 0) or 0
        completion_tokens = data.get("eval_count", 0) or 0

        logger.info(
            f"[{model_id}] Ollama call completed in "
            f"{int((time.time() - start_time) * 1000)}ms, {len(content)} chars"
        )
        return CompletionReply(
            content=content,
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    def send_streaming_request(
        self,
        model_id: str,
        messages: Sequence[Message],
        options: RequestOptions,
        callbacks: StreamCallbacks,
    ) -> str:
        def run() -> str:
            self._ensure_available(model_id)
            request = self._client.build_request(
                "POST",
                "/api/chat",
                json=self._body(model_id, messages, options, stream=True),
                timeout=_request_timeout(options),
            )
            response = self._client.send(request, stream=True)
            if not response.is_success:
                try:
                    response.read()
                finally:
                    response.close()
                _raise_for_status(response, "Ollama", ProviderKind.OLLAMA, model_id)
            return decode_ndjson_stream(HttpxStreamReader(response), callbacks, label=model_id)

        return _stream_with_error_sink(callbacks, ProviderKind.OLLAMA, model_id, run)

    def list_installed_models(self) -> list[InstalledModel]:
        """Models installed on the local server (`GET /api/tags`)."""
        try:
            response = self._client.get("/api/tags", timeout=AVAILABILITY_TIMEOUT)
        except httpx.TransportError as e:
            raise ProviderTransportError(
                f"Ollama request failed: {e}", provider=ProviderKind.OLLAMA.value
            ) from e
        _raise_for_status(response, "Ollama", ProviderKind.OLLAMA, "")

        installed = []
        for entry in response.json().get("models") or []:
            details = entry.get("details") or {}
            installed.append(
                InstalledModel(
                    name=entry["name"],
                    parameter_size=details.get("parameter_size", ""),
                    family=details.get("family", ""),
                    size=entry.get("size", 0),
                )
            )
        return installed
