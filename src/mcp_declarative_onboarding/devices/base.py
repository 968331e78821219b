"""Base device client abstraction for the appliance management API."""
import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class DeviceConfig:
    """Connection settings for one managed appliance."""
    type: str
    name: str
    host: str = "localhost"
    port: int = 443
    username: str = "admin"
    password: Optional[str] = None
    password_env: str = "ONBOARD_DEVICE_PASSWORD"
    timeout: int = 30
    retries: int = 3
    retry_delay: float = 2
    verify_ssl: bool = True
    base_path: str = "/mgmt"

    def get_password(self) -> str:
        """Get password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")


class DeviceClientError(Exception):
    """A management API call failed.

    status carries the HTTP-style status code when the device answered,
    and is None for transport failures.
    """

    def __init__(self, message: str, status: Optional[int] = None, path: Optional[str] = None):
        self.status = status
        self.path = path
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.status == 404


class DeviceClient(ABC):
    """Abstract management API client consumed by the engine.

    Calls are treated as idempotent at-least-once operations; the engine
    never assumes exactly-once delivery.
    """

    def __init__(self, device_id: str):
        self.device_id = device_id

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Read a resource or collection. Missing resources raise a 404 DeviceClientError."""
        pass

    @abstractmethod
    async def create(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        """Create an item in the collection at path (POST)."""
        pass

    @abstractmethod
    async def create_or_modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        """Create the named item in the collection at path, or modify it if it exists.

        A body without a name addresses the singleton at path itself.
        """
        pass

    @abstractmethod
    async def modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        """Partially update the resource at path (PATCH)."""
        pass

    @abstractmethod
    async def delete(self, path: str, missing_ok: bool = False) -> None:
        """Delete the resource at path. missing_ok ignores 404."""
        pass

    async def close(self) -> None:
        """Release any held connection."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def item_name_path(path: str, body: dict[str, Any]) -> str:
    """Path of the item a create_or_modify body addresses."""
    name = body["name"]
    partition = body.get("partition")
    if partition:
        return f"{path}/~{partition}~{name}"
    return f"{path}/{name}"


def describe_body(body: Optional[dict[str, Any]], silent: bool) -> str:
    """Payload text for logs; silent payloads are never rendered."""
    if body is None:
        return ""
    if silent:
        return "<suppressed>"
    return str(body)
