"""Schemas for model catalog definition files."""

from pydantic import BaseModel, Field

from timeline_ai.llm.schemas import ModelDescriptor, ProviderKind


class ModelEntry(BaseModel):
    """One model as written in a definitions YAML file."""

    id: str
    name: str
    description: str = ""
    max_context_tokens: int = Field(..., gt=0, description="Context window in tokens")
    supports_streaming: bool = True
    supports_tools: bool = False
    is_local: bool = False


class ProviderDefinition(BaseModel):
    """A definitions file: one provider and the models it serves."""

    provider_kind: ProviderKind
    models: list[ModelEntry] = Field(default_factory=list)

    def descriptors(self) -> list[ModelDescriptor]:
        return [
            ModelDescriptor(
                id=m.id,
                name=m.name,
                provider_kind=self.provider_kind,
                description=m.description,
                is_local=m.is_local,
                supports_streaming=m.supports_streaming,
                supports_tools=m.supports_tools,
                max_context_tokens=m.max_context_tokens,
            )
            for m in self.models
        ]
