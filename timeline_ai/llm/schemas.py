"""Provider-agnostic request/response shapes.

Everything the router hands to a backend, and everything a backend hands
back, is expressed with these models. Provider-specific wire formats stay
inside the backends.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderKind(str, Enum):
    """Closed set of provider backends the router can dispatch to."""

    CLAUDE = "claude"        # Cloud messages API
    OPENAI = "openai"        # Cloud completion API
    DEEPSEEK = "deepseek"    # Cloud completion API, different host
    OLLAMA = "ollama"        # Local inference server


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """One entry of a conversation history. Frozen once created."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class ModelDescriptor(BaseModel):
    """Static (or dynamically discovered) description of a model."""

    id: str
    name: str = ""
    provider_kind: ProviderKind
    description: str = ""
    is_local: bool = False
    supports_streaming: bool = True
    supports_tools: bool = False
    max_context_tokens: int = Field(..., gt=0)


class RequestOptions(BaseModel):
    """Caller-supplied tuning for one dispatch. Every field has a default."""

    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    fallback_model_ids: list[str] = Field(default_factory=list)
    retry_attempts_per_model: int = Field(default=1, ge=1)
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    apply_context_window: bool = Field(
        default=True,
        description="Trim/compress the history to each candidate's context limit",
    )


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionReply(BaseModel):
    """What a backend returns for one non-streaming call."""

    content: str
    usage: Optional[Usage] = None


class DispatchResult(BaseModel):
    """Returned to the caller and stored in the response cache."""

    content: str
    model_id: str
    provider_kind: ProviderKind
    usage: Optional[Usage] = None
    response_time_ms: int = 0
    cached: bool = False


class InstalledModel(BaseModel):
    """One entry of the local inference server's model list."""

    name: str
    parameter_size: str = ""
    family: str = ""
    size: int = 0


@dataclass
class StreamCallbacks:
    """Sink for a streaming call.

    on_content receives each non-empty delta, on_complete the full text once,
    on_error any failure (including cancellation) before it is raised.
    cancellation_check is polled between received chunks.
    """

    on_content: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    cancellation_check: Optional[Callable[[], bool]] = None

    def emit_content(self, delta: str) -> None:
        if self.on_content is not None:
            self.on_content(delta)

    def emit_complete(self, content: str) -> None:
        if self.on_complete is not None:
            self.on_complete(content)

    def emit_error(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)

    def is_cancelled(self) -> bool:
        return bool(self.cancellation_check and self.cancellation_check())
