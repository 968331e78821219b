"""REST management client for the appliance (iControl-REST style API).

Resources live under https://<host>:<port>/mgmt/... and are addressed as
collection paths (/tm/net/vlan) or item paths (/tm/net/vlan/~Common~name).
Transport errors are retried with exponential backoff; HTTP errors are
raised as DeviceClientError carrying the status code.
"""
import logging
from typing import Any, Optional

import httpx

from .base import DeviceClient, DeviceClientError, DeviceConfig, describe_body, item_name_path
from ..utils.connection import with_retry
from ..utils.logging_config import timed

logger = logging.getLogger(__name__)


class RestDeviceClient(DeviceClient):
    """Device client talking HTTPS to the management API."""

    def __init__(
        self,
        device_id: str,
        config: DeviceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(device_id)
        self.config = config
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._base_url = f"https://{config.host}:{config.port}{config.base_path}"

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                auth=(self.config.username, self.config.get_password()),
                timeout=httpx.Timeout(self.config.timeout),
                verify=self.config.verify_ssl,
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    @with_retry(max_attempts=3, min_wait=1, max_wait=10)
    async def _send(self, method: str, path: str, body: Optional[dict[str, Any]]) -> httpx.Response:
        client = self._ensure_client()
        return await client.request(method, f"{self._base_url}{path}", json=body)

    @timed("device_request")
    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        silent: bool = False,
    ) -> Any:
        logger.debug(f"{self.device_id}: {method} {path} {describe_body(body, silent)}")
        try:
            response = await self._send(method, path, body)
        except httpx.HTTPError as e:
            raise DeviceClientError(f"{method} {path} failed: {e}", path=path) from e

        if response.status_code >= 400:
            message = response.text
            try:
                message = response.json().get("message", message)
            except ValueError:
                pass
            raise DeviceClientError(
                f"{method} {path} returned {response.status_code}: {message}",
                status=response.status_code,
                path=path,
            )

        if not response.content:
            return {}
        return response.json()

    async def get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def create(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        return await self._request("POST", path, body, silent=silent)

    async def create_or_modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        if "name" not in body:
            return await self._request("PATCH", path, body, silent=silent)

        target = item_name_path(path, body)
        try:
            await self._request("GET", target)
        except DeviceClientError as e:
            if not e.not_found:
                raise
            return await self._request("POST", path, body, silent=silent)

        update = {k: v for k, v in body.items() if k not in ("name", "partition")}
        return await self._request("PATCH", target, update, silent=silent)

    async def modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        return await self._request("PATCH", path, body, silent=silent)

    async def delete(self, path: str, missing_ok: bool = False) -> None:
        try:
            await self._request("DELETE", path)
        except DeviceClientError as e:
            if missing_ok and e.not_found:
                logger.debug(f"{self.device_id}: {path} already absent")
                return
            raise
