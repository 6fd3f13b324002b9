"""Model catalog API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from timeline_ai.api.dependencies import get_provider_router
from timeline_ai.llm.router import ProviderRouter
from timeline_ai.llm.schemas import ModelDescriptor, ProviderKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/models", tags=["models"])


@router.get("", response_model=list[ModelDescriptor])
def list_models(
    provider: Optional[ProviderKind] = Query(None, description="Filter by provider"),
    provider_router: ProviderRouter = Depends(get_provider_router),
) -> list[ModelDescriptor]:
    """List models that can currently be used.

    Cloud models are listed when their provider has a credential; local
    models are listed when the local runtime reports them installed.
    """
    models = provider_router.get_available_models()
    if provider:
        models = [m for m in models if m.provider_kind == provider]
    return models


@router.get("/{model_id}/availability")
def get_model_availability(
    model_id: str,
    provider_router: ProviderRouter = Depends(get_provider_router),
) -> dict:
    """Check whether a model is reachable right now."""
    return {
        "model_id": model_id,
        "provider_kind": provider_router.resolve_provider(model_id).value,
        "available": provider_router.is_model_available(model_id),
    }
