"""Service construction and FastAPI dependencies.

build_services() is the composition root: it creates one of each service
and wires them together. The app keeps the result on app.state.services;
routes receive individual services through the get_* dependencies.
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from timeline_ai.executor.batch_operations import ClipOperations
from timeline_ai.executor.batch_runner import BatchRunner
from timeline_ai.executor.native_bridge import HttpNativeBridge
from timeline_ai.executor.workflow_runner import WorkflowExecutor
from timeline_ai.llm.cache import ResponseCache
from timeline_ai.llm.credentials import CachedCredentials, EnvCredentialSource
from timeline_ai.llm.factory import build_default_backends
from timeline_ai.llm.router import ProviderRouter
from timeline_ai.model_catalog.registry import ModelCatalog
from timeline_ai.workflows.registry import WorkflowRegistry

logger = logging.getLogger(__name__)


@dataclass
class Services:
    provider_router: ProviderRouter
    workflow_executor: WorkflowExecutor
    batch_runner: BatchRunner


def build_services() -> Services:
    credentials = CachedCredentials(EnvCredentialSource())
    catalog = ModelCatalog()
    provider_router = ProviderRouter(
        build_default_backends(credentials),
        catalog=catalog,
        cache=ResponseCache(),
    )

    bridge = HttpNativeBridge()
    workflow_executor = WorkflowExecutor(bridge, registry=WorkflowRegistry())
    batch_runner = BatchRunner(ClipOperations(bridge, router=provider_router))

    logger.info(
        f"Services ready: {catalog.count} models, "
        f"{len(workflow_executor.get_available_workflows())} workflow types"
    )
    return Services(
        provider_router=provider_router,
        workflow_executor=workflow_executor,
        batch_runner=batch_runner,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_provider_router(request: Request) -> ProviderRouter:
    return get_services(request).provider_router


def get_workflow_executor(request: Request) -> WorkflowExecutor:
    return get_services(request).workflow_executor


def get_batch_runner(request: Request) -> BatchRunner:
    return get_services(request).batch_runner
