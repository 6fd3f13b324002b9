"""Boundary to the native media backend.

Every call is a named operation plus a flat argument map; the reply is
whatever JSON the backend returns for that operation. Nothing here knows
what the operations do.
"""

import logging
import os
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

NATIVE_BRIDGE_URL = os.environ.get("NATIVE_BRIDGE_URL", "http://127.0.0.1:7878")

# Renders and transcriptions can take a long time
NATIVE_TIMEOUT = httpx.Timeout(connect=10.0, read=1800.0, write=60.0, pool=10.0)


class NativeOperationError(RuntimeError):
    """A native operation failed or could not be reached."""

    def __init__(self, message: str, operation: str):
        super().__init__(message)
        self.operation = operation


@runtime_checkable
class NativeBridge(Protocol):
    def invoke(self, operation: str, args: dict[str, Any]) -> Any: ...


class HttpNativeBridge:
    """Invokes native operations over HTTP: POST {base}/invoke/{operation}."""

    def __init__(
        self,
        base_url: str = NATIVE_BRIDGE_URL,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url
        self._client = http_client or httpx.Client(base_url=base_url, timeout=NATIVE_TIMEOUT)

    def invoke(self, operation: str, args: dict[str, Any]) -> Any:
        logger.debug(f"Native call {operation}({', '.join(args)})")
        try:
            response = self._client.post(f"/invoke/{operation}", json=args)
        except httpx.HTTPError as e:
            raise NativeOperationError(f"{operation} unreachable: {e}", operation) from e

        if not response.is_success:
            raise NativeOperationError(
                f"{operation} failed: {response.status_code} {response.text}", operation
            )
        if not response.content:
            return None
        return response.json()
