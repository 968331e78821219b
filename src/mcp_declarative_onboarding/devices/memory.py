"""In-memory appliance used for tests and offline runs.

Behaves like the management API's resource database: collections of named
items, singleton objects, file uploads and utility commands. Optionally
enforces reference integrity the way the real device does (an object may
not be created before the objects it names, and may not be deleted while
another object still names it).

Failures can be injected per method and path pattern to exercise the
engine's rollback paths.
"""
import asyncio
import copy
import fnmatch
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from .base import DeviceClient, DeviceClientError, describe_body, item_name_path

logger = logging.getLogger(__name__)

_REFERENCE = re.compile(r"^/(Common|LOCAL_ONLY)/[^/\s]+$")

UPLOAD_PREFIX = "/shared/file-transfer/uploads/"
DOWNLOADS_PREFIX = "/var/config/rest/downloads/"

FACTORY_COLLECTIONS = (
    "/tm/sys/provision",
    "/tm/sys/management-route",
    "/tm/auth/user",
    "/tm/auth/remote-role/role-info",
    "/tm/auth/radius-server",
    "/tm/auth/radius",
    "/tm/auth/tacacs",
    "/tm/auth/ldap",
    "/tm/sys/file/ssl-cert",
    "/tm/sys/file/ssl-key",
    "/tm/security/firewall/address-list",
    "/tm/security/firewall/port-list",
    "/tm/security/firewall/policy",
    "/tm/net/trunk",
    "/tm/net/vlan",
    "/tm/net/route-domain",
    "/tm/net/self",
    "/tm/net/route",
    "/tm/net/dns-resolver",
    "/tm/net/routing/as-path",
    "/tm/net/routing/prefix-list",
    "/tm/net/routing/route-map",
    "/tm/net/routing/bgp",
    "/tm/cm/device",
    "/tm/cm/traffic-group",
    "/tm/cm/device-group",
    "/tm/gtm/monitor/http",
    "/tm/gtm/monitor/https",
    "/tm/gtm/monitor/gateway-icmp",
    "/tm/gtm/monitor/tcp",
    "/tm/gtm/monitor/udp",
    "/tm/gtm/datacenter",
    "/tm/gtm/server",
    "/tm/gtm/prober-pool",
)

FACTORY_HOSTNAME = "bigip1.localdomain"


def factory_state(machine_id: str = "f5a1b2c3-0000-4000-8000-000000000001") -> tuple[dict, dict]:
    """Collections and singletons of a freshly licensed appliance."""
    collections: dict[str, list[dict]] = {path: [] for path in FACTORY_COLLECTIONS}
    collections["/tm/sys/provision"] = [
        {"name": "ltm", "level": "nominal"},
        {"name": "gtm", "level": "none"},
        {"name": "asm", "level": "none"},
        {"name": "afm", "level": "none"},
        {"name": "apm", "level": "none"},
        {"name": "avr", "level": "none"},
    ]
    collections["/tm/auth/user"] = [
        {"name": "admin", "shell": "tmsh", "partitionAccess": [{"name": "all-partitions", "role": "admin"}]},
        {"name": "root", "shell": "bash"},
    ]
    collections["/tm/net/route-domain"] = [
        {"name": "0", "partition": "Common", "id": 0, "parent": "none", "connectionLimit": 0,
         "strict": "enabled", "vlans": [], "routingProtocol": []},
    ]
    collections["/tm/cm/device"] = [
        {"name": FACTORY_HOSTNAME, "partition": "Common", "selfDevice": "true",
         "configsyncIp": "none", "mirrorIp": "any6", "mirrorSecondaryIp": "any6",
         "unicastAddress": "none", "multicastInterface": "none", "multicastIp": "any6", "multicastPort": 0},
    ]
    collections["/tm/cm/traffic-group"] = [
        {"name": "traffic-group-1", "partition": "Common", "autoFailbackEnabled": "false",
         "autoFailbackTime": 60, "failoverMethod": "ha-order", "haLoadFactor": 1, "haOrder": []},
        {"name": "traffic-group-local-only", "partition": "Common", "autoFailbackEnabled": "false",
         "autoFailbackTime": 60, "failoverMethod": "ha-order", "haLoadFactor": 1, "haOrder": []},
    ]
    collections["/tm/cm/device-group"] = [
        {"name": "device_trust_group", "partition": "Common", "type": "sync-only",
         "devices": [{"name": FACTORY_HOSTNAME}]},
        {"name": "datasync-global-dg", "partition": "Common", "type": "sync-only", "devices": []},
        {"name": "gtm", "partition": "Common", "type": "sync-only", "devices": []},
    ]
    collections["/tm/sys/management-route"] = [
        {"name": "default", "partition": "Common", "gateway": "192.0.2.1", "network": "default", "mtu": 0},
    ]
    monitor_defaults = {"destination": "*:*", "interval": 30, "timeout": 120, "probeTimeout": 5,
                        "ignoreDownResponse": "disabled", "transparent": "disabled", "reverse": "disabled"}
    for kind, name in (("http", "http"), ("https", "https"), ("gateway-icmp", "gateway_icmp"),
                       ("tcp", "tcp"), ("udp", "udp")):
        collections[f"/tm/gtm/monitor/{kind}"] = [dict(monitor_defaults, name=name, partition="Common")]

    singletons = {
        "/shared/identified-devices/config/device-info": {
            "machineId": machine_id, "hostname": FACTORY_HOSTNAME, "version": "16.1.0",
        },
        "/tm/sys/global-settings": {
            "hostname": FACTORY_HOSTNAME, "consoleInactivityTimeout": 0,
            "guiAudit": "disabled", "mgmtDhcp": "enabled",
        },
        "/tm/cli/global-settings": {"idleTimeout": 0},
        "/tm/sys/software/update": {"autoCheck": "enabled", "autoPhonehome": "enabled"},
        "/tm/sys/dns": {"nameServers": ["192.0.2.53"], "search": ["localhost"]},
        "/tm/sys/ntp": {"servers": [], "timezone": "America/Los_Angeles"},
        "/tm/auth/source": {"type": "local", "fallback": "false"},
        "/tm/auth/remote-user": {
            "defaultPartition": "all", "defaultRole": "no-access", "remoteConsoleAccess": "disabled",
        },
        "/tm/gtm/global-settings/general": {
            "synchronization": "no", "synchronizationGroupName": "default",
            "synchronizationTimeTolerance": 10, "synchronizationTimeout": 180,
        },
    }
    return collections, singletons


@dataclass
class InjectedFailure:
    """A failure returned for calls matching method and path pattern."""
    method: str
    pattern: str
    status: int = 400
    message: str = "injected failure"
    remaining: Optional[int] = None

    def matches(self, method: str, path: str) -> bool:
        if self.remaining is not None and self.remaining <= 0:
            return False
        return self.method in (method, "*") and fnmatch.fnmatch(path, self.pattern)


def _key(body: dict[str, Any]) -> str:
    partition = body.get("partition")
    return f"~{partition}~{body['name']}" if partition else body["name"]


def _strings(node: Any) -> Iterator[str]:
    if isinstance(node, str):
        yield node
    elif isinstance(node, dict):
        for value in node.values():
            yield from _strings(value)
    elif isinstance(node, list):
        for value in node:
            yield from _strings(value)


class InMemoryDeviceClient(DeviceClient):
    """Device client backed by an in-process resource database."""

    def __init__(
        self,
        device_id: str = "memory",
        collections: Optional[dict[str, list[dict]]] = None,
        singletons: Optional[dict[str, dict]] = None,
        strict_references: bool = True,
        latency: float = 0.0,
    ):
        super().__init__(device_id)
        if collections is None and singletons is None:
            collections, singletons = factory_state()
        self._collections: dict[str, dict[str, dict]] = {}
        for path, items in (collections or {}).items():
            self._collections[path] = {}
            for body in items:
                self._store(path, body)
        self._singletons: dict[str, dict] = copy.deepcopy(singletons or {})
        self.uploads: dict[str, Any] = {}
        self.strict_references = strict_references
        self.latency = latency
        self.calls: list[dict[str, Any]] = []
        self._failures: list[InjectedFailure] = []

    # --- test helpers ---

    def fail_on(
        self,
        method: str,
        pattern: str,
        status: int = 400,
        message: str = "injected failure",
        times: Optional[int] = None,
    ) -> None:
        """Make calls matching method ("*" for any) and a glob path pattern fail."""
        self._failures.append(InjectedFailure(method, pattern, status, message, times))

    def clear_failures(self) -> None:
        self._failures.clear()

    @property
    def mutations(self) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] != "GET"]

    def reset_calls(self) -> None:
        self.calls.clear()

    def items(self, path: str) -> list[dict[str, Any]]:
        return copy.deepcopy(list(self._collections.get(path, {}).values()))

    def find(self, path: str, name: str) -> Optional[dict[str, Any]]:
        for body in self._collections.get(path, {}).values():
            if body.get("name") == name:
                return copy.deepcopy(body)
        return None

    def singleton(self, path: str) -> Optional[dict[str, Any]]:
        value = self._singletons.get(path)
        return copy.deepcopy(value) if value is not None else None

    # --- internals ---

    def _store(self, path: str, body: dict[str, Any]) -> None:
        stored = copy.deepcopy(body)
        if stored.get("partition"):
            stored.setdefault("fullPath", f"/{stored['partition']}/{stored['name']}")
        self._collections[path][_key(stored)] = stored

    def _locate(self, path: str) -> Optional[tuple[str, str]]:
        parent, _, last = path.rpartition("/")
        if parent in self._collections and last in self._collections[parent]:
            return parent, last
        return None

    def _all_objects(self) -> Iterator[dict[str, Any]]:
        for items in self._collections.values():
            yield from items.values()
        yield from self._singletons.values()

    def _exists(self, full_path: str) -> bool:
        return any(obj.get("fullPath") == full_path for obj in self._all_objects())

    def _check_references(self, method: str, path: str, body: dict[str, Any]) -> None:
        if not self.strict_references:
            return
        own = body.get("fullPath") or (
            f"/{body['partition']}/{body['name']}" if body.get("partition") and body.get("name") else None
        )
        for value in _strings(body):
            if value != own and _REFERENCE.match(value) and not self._exists(value):
                raise DeviceClientError(
                    f"{method} {path}: referenced object {value} does not exist", status=400, path=path
                )

    def _check_unreferenced(self, path: str, target: dict[str, Any]) -> None:
        if not self.strict_references or not target.get("fullPath"):
            return
        full = target["fullPath"]
        for obj in self._all_objects():
            if obj is target:
                continue
            if full in _strings(obj):
                raise DeviceClientError(
                    f"DELETE {path}: {full} is referenced by {obj.get('fullPath') or obj.get('name')}",
                    status=400,
                    path=path,
                )

    async def _call(self, method: str, path: str, body: Optional[dict[str, Any]] = None, silent: bool = False):
        await asyncio.sleep(self.latency)
        self.calls.append({"method": method, "path": path, "body": copy.deepcopy(body)})
        logger.debug(f"{self.device_id}: {method} {path} {describe_body(body, silent)}")
        for failure in self._failures:
            if failure.matches(method, path):
                if failure.remaining is not None:
                    failure.remaining -= 1
                raise DeviceClientError(f"{method} {path}: {failure.message}", status=failure.status, path=path)

    def _not_found(self, method: str, path: str) -> DeviceClientError:
        return DeviceClientError(f"{method} {path}: object not found", status=404, path=path)

    # --- DeviceClient ---

    async def get(self, path: str) -> Any:
        await self._call("GET", path)
        if path in self._collections:
            return {"items": copy.deepcopy(list(self._collections[path].values()))}
        located = self._locate(path)
        if located:
            return copy.deepcopy(self._collections[located[0]][located[1]])
        if path in self._singletons:
            return copy.deepcopy(self._singletons[path])
        if path in self.uploads:
            return {"content": copy.deepcopy(self.uploads[path])}
        raise self._not_found("GET", path)

    async def create(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        await self._call("POST", path, body, silent)
        if path.startswith(UPLOAD_PREFIX):
            self.uploads[path] = copy.deepcopy(body.get("content", body))
            return {"remainingByteCount": 0}
        if path.startswith("/tm/util/"):
            return self._run_command(path, body)
        if path not in self._collections:
            raise self._not_found("POST", path)
        if _key(body) in self._collections[path]:
            raise DeviceClientError(f"POST {path}: {body['name']} already exists", status=409, path=path)
        self._check_references("POST", path, body)
        self._store(path, body)
        return copy.deepcopy(body)

    async def create_or_modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        if "name" not in body:
            return await self.modify(path, body, silent=silent)
        target = item_name_path(path, body)
        if self._locate(target):
            update = {k: v for k, v in body.items() if k not in ("name", "partition")}
            return await self.modify(target, update, silent=silent)
        return await self.create(path, body, silent=silent)

    async def modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        await self._call("PATCH", path, body, silent)
        located = self._locate(path)
        if located:
            target = self._collections[located[0]][located[1]]
        elif path in self._singletons:
            target = self._singletons[path]
        else:
            raise self._not_found("PATCH", path)
        merged = copy.deepcopy(target)
        merged.update(copy.deepcopy(body))
        self._check_references("PATCH", path, merged)
        target.clear()
        target.update(merged)
        return copy.deepcopy(target)

    async def delete(self, path: str, missing_ok: bool = False) -> None:
        await self._call("DELETE", path)
        located = self._locate(path)
        if not located:
            if missing_ok:
                return
            raise self._not_found("DELETE", path)
        target = self._collections[located[0]][located[1]]
        self._check_unreferenced(path, target)
        del self._collections[located[0]][located[1]]

    def _run_command(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if path.endswith("/unix-rm"):
            target = str(body.get("utilCmdArgs", ""))
            if target.startswith(DOWNLOADS_PREFIX):
                self.uploads.pop(UPLOAD_PREFIX + target[len(DOWNLOADS_PREFIX):], None)
        return {"command": body.get("command", "run"), "commandResult": ""}
