"""Translation between declarations, device resources and DeviceConfig.

Both directions land in the same canonical DeviceConfig shape (declared
property names, canonical value encodings, references as "/Common/name")
so desired and current configuration can be diffed symmetrically.
"""
import copy
import logging
import re
from typing import Any, Optional

from ..devices.base import DeviceClient, DeviceClientError
from ..utils.logging_config import timed
from ..utils.versions import SUPPORTED_SCHEMA_VERSIONS
from .codecs import get_codec
from .schema import ConfigItem, DeviceConfig, Layout, PropertyDescriptor
from .schema_map import (
    AUTH_DEVICE_PATHS,
    AUTH_SOURCE_PATH,
    CM_DEVICE_PATH,
    COMMON,
    LDAP_PATH,
    LOCAL_ONLY,
    PRECEDENCE,
    RADIUS_PATH,
    RADIUS_PRIMARY_NAME,
    RADIUS_SECONDARY_NAME,
    RADIUS_SERVER_PATH,
    REMOTE_USER_PATH,
    SCHEMA_MAP,
    SYSTEM_AUTH_NAME,
    TACACS_PATH,
    get_item,
    map_references,
    normalize_ref,
)

logger = logging.getLogger(__name__)

# "/Common/<selfIp>/address" points at the address of a declared self IP
SELF_IP_POINTER = re.compile(r"^/Common/([^/]+)/address$")


def strip_address(address: str) -> str:
    """Drop prefix length and route domain suffix from an address."""
    address = str(address).split("/", 1)[0]
    return address.split("%", 1)[0]


class ConfigTranslator:
    """Convert declarations and raw device state into DeviceConfig values."""

    def __init__(self, schema_map: Optional[dict[str, ConfigItem]] = None):
        self.schema_map = schema_map or SCHEMA_MAP

    # --- declaration -> DeviceConfig ---

    def to_device_config(self, declaration: dict[str, Any]) -> DeviceConfig:
        """Translate a validated declaration into canonical desired config.

        Missing optional properties receive class defaults; properties whose
        default is None stay unmanaged and are left out.
        """
        common = declaration.get("Common") or {}
        self_ips = {
            name: entry for name, entry in common.items()
            if isinstance(entry, dict) and entry.get("class") == "SelfIp"
        }

        data: dict[str, Any] = {}
        for name, entry in common.items():
            if not isinstance(entry, dict):
                continue
            item = self.schema_map.get(entry.get("class"))
            if item is None:
                continue

            props = self.canonical_properties(item, entry)
            if item.layout == Layout.SELF_DEVICE:
                props = self._resolve_self_ip_pointers(props, self_ips)

            if item.nameless:
                data[item.schema_class] = props
            else:
                data.setdefault(item.schema_class, {})[name] = props

        return DeviceConfig(self._ordered(data))

    def canonical_properties(self, item: ConfigItem, entry: dict[str, Any]) -> dict[str, Any]:
        """Declared properties with defaults applied and values in canonical form."""
        props: dict[str, Any] = {}
        for prop in item.properties:
            value = entry.get(prop.name, copy.deepcopy(prop.default))
            if value is None:
                continue
            props[prop.name] = get_codec(prop.codec).canonical(value)

        for ref in item.references:
            map_references(props, ref.path, normalize_ref)
        return props

    def _resolve_self_ip_pointers(self, props: dict[str, Any], self_ips: dict[str, dict]) -> dict[str, Any]:
        def resolve(value: Any) -> Any:
            if not isinstance(value, str):
                return value
            match = SELF_IP_POINTER.match(value)
            if match and match.group(1) in self_ips:
                return strip_address(self_ips[match.group(1)].get("address", ""))
            return value

        resolved = {}
        for key, value in props.items():
            if key == "addressPorts":
                value = [dict(entry, address=resolve(entry.get("address"))) for entry in value]
            resolved[key] = resolve(value)
        return resolved

    def _ordered(self, data: dict[str, Any]) -> dict[str, Any]:
        return {cls: data[cls] for cls in PRECEDENCE if cls in data}

    # --- device -> DeviceConfig ---

    def device_paths(self) -> list[str]:
        """Every device path read_device() fetches."""
        paths: list[str] = []
        for item in self.schema_map.values():
            if item.variants:
                paths.extend(f"{item.path}/{variant}" for variant in item.variants)
            elif item.layout == Layout.COMPOSITE:
                paths.extend(AUTH_DEVICE_PATHS)
            else:
                paths.append(item.path)
            paths.extend(p.path for p in item.properties if p.path)
        return list(dict.fromkeys(paths))

    @timed("read_device")
    async def read_device(self, client: DeviceClient) -> dict[str, Any]:
        """Fetch the raw resources of every managed class.

        Returns:
            Mapping of device path to the GET response. Paths the device
            does not know (404) are left out.
        """
        raw: dict[str, Any] = {}
        for path in self.device_paths():
            try:
                raw[path] = await client.get(path)
            except DeviceClientError as e:
                if not e.not_found:
                    raise
                logger.debug(f"{client.device_id}: {path} not present on device")
        return raw

    def from_device_config(self, raw: dict[str, Any]) -> DeviceConfig:
        """Translate raw device resources (path -> GET response) into DeviceConfig."""
        data: dict[str, Any] = {}
        for item in self.schema_map.values():
            if item.layout == Layout.NAMED:
                value = self._read_named(item, raw)
            elif item.layout == Layout.SINGLETON:
                value = self._read_singleton(item, raw)
            elif item.layout == Layout.SELF_DEVICE:
                value = self._read_self_device(item, raw)
            elif item.layout == Layout.MODULE_LEVELS:
                value = self._read_module_levels(item, raw)
            else:
                value = self._read_authentication(raw)
            if value:
                data[item.schema_class] = value
        return DeviceConfig(self._ordered(data))

    def decode_properties(self, item: ConfigItem, body: dict[str, Any]) -> dict[str, Any]:
        props: dict[str, Any] = {}
        for prop in item.properties:
            if prop.secret or prop.selector or prop.device_name not in body:
                continue
            value = get_codec(prop.codec).decode(body[prop.device_name])
            if value is not None:
                props[prop.name] = value
        for ref in item.references:
            map_references(props, ref.path, normalize_ref)
        return props

    def _read_named(self, item: ConfigItem, raw: dict[str, Any]) -> dict[str, Any]:
        sources = [(f"{item.path}/{v}", v) for v in item.variants] or [(item.path, None)]
        objects: dict[str, Any] = {}
        for path, variant in sources:
            for body in (raw.get(path) or {}).get("items", []):
                if item.partitioned and body.get("partition", COMMON) not in (COMMON, LOCAL_ONLY):
                    continue
                props = self.decode_properties(item, body)
                if variant is not None:
                    props = {"monitorType": variant, **props}
                objects[body["name"]] = props
        return objects

    def _read_singleton(self, item: ConfigItem, raw: dict[str, Any]) -> dict[str, Any]:
        props: dict[str, Any] = {}
        for prop in item.properties:
            body = raw.get(prop.path or item.path) or {}
            if prop.device_name in body:
                value = get_codec(prop.codec).decode(body[prop.device_name])
                if value is not None:
                    props[prop.name] = value
        return props

    def _read_self_device(self, item: ConfigItem, raw: dict[str, Any]) -> dict[str, Any]:
        body = self_device(raw.get(CM_DEVICE_PATH))
        return self.decode_properties(item, body) if body else {}

    def _read_module_levels(self, item: ConfigItem, raw: dict[str, Any]) -> dict[str, Any]:
        known = set(item.property_names())
        return {
            body["name"]: body.get("level", "none")
            for body in (raw.get(item.path) or {}).get("items", [])
            if body.get("name") in known
        }

    def _read_authentication(self, raw: dict[str, Any]) -> dict[str, Any]:
        item = get_item("Authentication")
        props: dict[str, Any] = {}

        source = raw.get(AUTH_SOURCE_PATH) or {}
        for name in ("enabledSourceType", "fallback"):
            prop = item.get_property(name)
            if prop.device_name in source:
                props[name] = get_codec(prop.codec).decode(source[prop.device_name])

        remote_user = raw.get(REMOTE_USER_PATH)
        if remote_user:
            props["remoteUsersDefaults"] = get_codec("remote_users").decode(remote_user)

        radius = _find_item(raw.get(RADIUS_PATH), SYSTEM_AUTH_NAME)
        if radius:
            servers = {}
            by_name = {b.get("name"): b for b in (raw.get(RADIUS_SERVER_PATH) or {}).get("items", [])}
            for role, name in (("primary", RADIUS_PRIMARY_NAME), ("secondary", RADIUS_SECONDARY_NAME)):
                if name in by_name:
                    servers[role] = {"server": by_name[name].get("server"), "port": by_name[name].get("port", 1812)}
            props["radius"] = {"serviceType": radius.get("serviceType", "default"), "servers": servers}

        tacacs = _find_item(raw.get(TACACS_PATH), SYSTEM_AUTH_NAME)
        if tacacs:
            props["tacacs"] = get_codec("tacacs").decode(tacacs)

        ldap = _find_item(raw.get(LDAP_PATH), SYSTEM_AUTH_NAME)
        if ldap:
            props["ldap"] = get_codec("ldap").decode(ldap)

        return props

    # --- DeviceConfig -> device bodies ---

    def encode_value(self, prop: PropertyDescriptor, value: Any) -> Any:
        return get_codec(prop.codec).encode(value)

    def to_device_body(
        self,
        schema_class: str,
        name: Optional[str],
        props: dict[str, Any],
        include_create_only: bool = True,
    ) -> dict[str, Any]:
        """Encode a (possibly partial) property bag into one device body.

        Named classes get name and partition; singleton classes spread over
        several paths should use to_device_bodies() instead.
        """
        item = get_item(schema_class)
        body: dict[str, Any] = {}
        if name is not None and item.layout == Layout.NAMED:
            body["name"] = name
            if item.partitioned:
                body["partition"] = COMMON
        for key, value in props.items():
            prop = item.get_property(key)
            if prop is None or value is None or prop.selector:
                continue
            if prop.create_only and not include_create_only:
                continue
            body[prop.device_name] = self.encode_value(prop, value)
        return body

    def to_device_bodies(self, schema_class: str, props: dict[str, Any]) -> dict[str, dict[str, Any]]:
        """Encode a nameless class's properties grouped by device path."""
        item = get_item(schema_class)
        bodies: dict[str, dict[str, Any]] = {}
        for key, value in props.items():
            prop = item.get_property(key)
            if prop is None or value is None:
                continue
            bodies.setdefault(prop.path or item.path, {})[prop.device_name] = self.encode_value(prop, value)
        return bodies

    # --- identifier migration ---

    def migrate_ids(self, schema_class: str, props: dict[str, Any]) -> dict[str, Any]:
        """Rewrite keys stored under the legacy identifier scheme.

        Idempotent: current keys pass through untouched, and a current key
        wins over its legacy twin.
        """
        item = self.schema_map.get(schema_class)
        if item is None or not isinstance(props, dict):
            return copy.deepcopy(props)
        renames = {p.legacy_name: p.name for p in item.properties if p.legacy_name and p.legacy_name != p.name}
        migrated: dict[str, Any] = {}
        for key, value in props.items():
            new_key = renames.get(key, key)
            if new_key != key and new_key in props:
                continue
            migrated[new_key] = copy.deepcopy(value)
        return migrated

    def migrate_config(self, common: dict[str, Any]) -> dict[str, Any]:
        """Apply migrate_ids() across a whole {class: ...} tree."""
        migrated: dict[str, Any] = {}
        for schema_class, value in (common or {}).items():
            item = self.schema_map.get(schema_class)
            if item is None or not isinstance(value, dict):
                migrated[schema_class] = copy.deepcopy(value)
            elif item.nameless:
                migrated[schema_class] = self.migrate_ids(schema_class, value)
            else:
                migrated[schema_class] = {
                    name: self.migrate_ids(schema_class, props) for name, props in value.items()
                }
        return migrated

    # --- DeviceConfig -> declaration ---

    def to_declaration(self, config: DeviceConfig, schema_version: Optional[str] = None) -> dict[str, Any]:
        """Render configuration as a declaration. Protected defaults are left out."""
        common: dict[str, Any] = {"class": "Tenant"}
        for schema_class in PRECEDENCE:
            value = config.get_class(schema_class)
            if not value:
                continue
            item = self.schema_map[schema_class]
            if item.nameless:
                common[f"current{schema_class}"] = {"class": schema_class, **value}
                continue
            for name, props in value.items():
                if name in item.protected:
                    continue
                if name in common:
                    logger.warning(f"Skipping {schema_class} {name}: name already used in declaration")
                    continue
                common[name] = {"class": schema_class, **props}

        return {
            "schemaVersion": schema_version or SUPPORTED_SCHEMA_VERSIONS[0],
            "class": "Device",
            "Common": common,
        }


def self_device(response: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """The local device entry of a /tm/cm/device collection response."""
    for body in (response or {}).get("items", []):
        if str(body.get("selfDevice")) == "true":
            return body
    return None


def _find_item(response: Optional[dict[str, Any]], name: str) -> Optional[dict[str, Any]]:
    for body in (response or {}).get("items", []):
        if body.get("name") == name:
            return body
    return None
