"""Authentication domain: remote roles, RADIUS, TACACS+, LDAP and auth source.

Sub-steps of an Authentication change run in a fixed order:

1. RADIUS servers, then the aggregate system-auth object, then removal of
   a secondary server that is no longer declared
2. TACACS+ system-auth object
3. LDAP certificate material (upload, install, clean up), then the LDAP
   system-auth object
4. Auth source type and fallback
5. Defaults for remote users without a role mapping

The source has to come after the per-method objects since the device
rejects a source whose method object does not exist.
"""
import base64
import binascii
import logging
from typing import Any

from ..config_engine.codecs import get_codec
from ..config_engine.errors import ApplyError
from ..config_engine.schema import ChangeType, HandlerOutcome, Operation, PlanSlice
from ..config_engine.schema_map import (
    AUTH_SOURCE_PATH,
    COMMON,
    DOWNLOADS_DIR,
    LDAP_CERT_FILES,
    LDAP_PATH,
    RADIUS_PATH,
    RADIUS_PRIMARY_NAME,
    RADIUS_SECONDARY_NAME,
    RADIUS_SERVER_PATH,
    REMOTE_USER_PATH,
    SSL_CERT_PATH,
    SSL_KEY_PATH,
    SYSTEM_AUTH_NAME,
    TACACS_PATH,
    UNIX_RM_PATH,
    UPLOAD_PATH,
    full_path,
)
from ..devices.base import DeviceClient
from ..utils.masking import contains_secrets
from .base import DomainHandler

logger = logging.getLogger(__name__)

SOURCE_PROPERTIES = ("enabledSourceType", "fallback")


class AuthHandler(DomainHandler):
    """Apply remote authentication settings."""

    domain = "authentication"

    async def process(self, plan_slice: PlanSlice, client: DeviceClient) -> HandlerOutcome:
        """Role upserts have no dependencies on each other and run concurrently."""
        outcome = HandlerOutcome(domain=self.domain)
        pending_roles: list[Operation] = []

        async def flush_roles() -> None:
            if not pending_roles:
                return
            batch = list(pending_roles)
            pending_roles.clear()
            logger.debug(f"{client.device_id}: applying {len(batch)} remote role(s) concurrently")
            await self.gather_bounded(
                (lambda op=op: self.create(op, plan_slice, client)) for op in batch
            )
            outcome.operations += len(batch)

        for op in self.order(plan_slice.operations):
            if op.schema_class == "RemoteAuthRole" and op.change_type != ChangeType.DELETE:
                pending_roles.append(op)
                continue
            await flush_roles()
            await self.apply(op, plan_slice, client, outcome)
            outcome.operations += 1
        await flush_roles()
        return outcome

    async def create(self, op: Operation, plan_slice: PlanSlice, client: DeviceClient) -> None:
        if op.schema_class == "RemoteAuthRole" and op.change_type == ChangeType.MODIFY:
            # Role entries are always written whole
            props = plan_slice.desired.get(op.schema_class, op.name) or op.properties
            op = Operation(op.schema_class, op.name, op.change_type, props)
        await super().create(op, plan_slice, client)

    async def modify(
        self,
        op: Operation,
        plan_slice: PlanSlice,
        client: DeviceClient,
        outcome: HandlerOutcome,
    ) -> None:
        if op.schema_class != "Authentication":
            await super().modify(op, plan_slice, client, outcome)
            return

        props = op.properties
        current = plan_slice.current.get("Authentication") or {}
        if "radius" in props:
            await self._radius(op, props["radius"], client)
        if "tacacs" in props:
            await self._tacacs(op, props["tacacs"], client)
        if "ldap" in props:
            await self._ldap(op, props["ldap"], client)
        if any(key in props for key in SOURCE_PROPERTIES):
            await self._source(op, props, current, client)
        if "remoteUsersDefaults" in props:
            body = get_codec("remote_users").encode(props["remoteUsersDefaults"])
            await self.call(op, REMOTE_USER_PATH, client.modify, body)

    # --- RADIUS ---

    async def _radius(self, op: Operation, radius: dict[str, Any], client: DeviceClient) -> None:
        codec = get_codec("radius")
        servers = radius.get("servers") or {}
        names = {"primary": RADIUS_PRIMARY_NAME, "secondary": RADIUS_SECONDARY_NAME}
        declared = [role for role in ("primary", "secondary") if servers.get(role)]
        if "primary" not in declared:
            raise ApplyError("radius requires a primary server", schema_class=op.schema_class, path=RADIUS_PATH)

        await self.gather_bounded(
            (lambda role=role: self.call(
                op, RADIUS_SERVER_PATH, client.create_or_modify,
                codec.server_body(names[role], servers[role]), silent=True,
            ))
            for role in declared
        )

        aggregate = {
            "name": SYSTEM_AUTH_NAME,
            "partition": COMMON,
            "serviceType": radius.get("serviceType", "default"),
            "servers": [full_path(names[role]) for role in declared],
        }
        await self.call(op, RADIUS_PATH, client.create_or_modify, aggregate, silent=True)

        if "secondary" not in declared:
            # Only safe once the aggregate object no longer lists it
            await self.call(
                op, f"{RADIUS_SERVER_PATH}/~{COMMON}~{RADIUS_SECONDARY_NAME}", client.delete, missing_ok=True
            )

    # --- TACACS+ ---

    async def _tacacs(self, op: Operation, tacacs: dict[str, Any], client: DeviceClient) -> None:
        body = {"name": SYSTEM_AUTH_NAME, "partition": COMMON, **get_codec("tacacs").encode(tacacs)}
        await self.call(op, TACACS_PATH, client.create_or_modify, body, silent=contains_secrets(tacacs))

    # --- LDAP ---

    async def _ldap(self, op: Operation, ldap: dict[str, Any], client: DeviceClient) -> None:
        for prop_name, file_name in LDAP_CERT_FILES.items():
            cert = ldap.get(prop_name)
            if cert and cert.get("base64"):
                await self._install_cert(op, file_name, cert["base64"], client)

        body = {"name": SYSTEM_AUTH_NAME, "partition": COMMON, **get_codec("ldap").encode(ldap)}
        await self.call(op, LDAP_PATH, client.create_or_modify, body, silent=contains_secrets(ldap))

    async def _install_cert(self, op: Operation, file_name: str, data: str, client: DeviceClient) -> None:
        """Upload certificate material, install it as a file object, remove the upload."""
        try:
            content = base64.b64decode(data).decode().strip()
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ApplyError(
                f"invalid base64 content for {file_name}: {e}", schema_class=op.schema_class, path=LDAP_PATH
            ) from e

        upload_path = f"{UPLOAD_PATH}/{file_name}"
        silent = file_name.endswith(".key")
        await self.call(op, upload_path, client.create, {"content": content}, silent=silent)

        file_path = SSL_KEY_PATH if file_name.endswith(".key") else SSL_CERT_PATH
        install = {"name": file_name, "partition": COMMON, "sourcePath": f"file:{DOWNLOADS_DIR}/{file_name}"}
        await self.call(op, file_path, client.create_or_modify, install)

        cleanup = {"command": "run", "utilCmdArgs": f"{DOWNLOADS_DIR}/{file_name}"}
        await self.call(op, UNIX_RM_PATH, client.create, cleanup)
        logger.info(f"{client.device_id}: installed {file_name}")

    # --- source and defaults ---

    async def _source(
        self,
        op: Operation,
        props: dict[str, Any],
        current: dict[str, Any],
        client: DeviceClient,
    ) -> None:
        source = {key: props.get(key, current.get(key)) for key in SOURCE_PROPERTIES}
        source = {key: value for key, value in source.items() if value is not None}
        body = self.translator.to_device_body("Authentication", None, source)
        await self.call(op, AUTH_SOURCE_PATH, client.modify, body)
