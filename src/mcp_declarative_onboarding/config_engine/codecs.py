"""Value encodings between declared properties and device fields.

Every codec maps a declared value to its device form (encode) and back
(decode). canonical() is what the translator stores in a DeviceConfig so
that desired and device-read values compare structurally.
"""
import copy
from typing import Any, Optional

from .schema_map import (
    LDAP_CERT_FILES,
    LDAP_PROPERTIES,
    LOCAL_ONLY,
    COMMON,
    RADIUS_DEFAULTS,
    RADIUS_SERVER_DEFAULTS,
    REMOTE_USERS_PROPERTIES,
    TACACS_PROPERTIES,
    full_path,
)


def _maybe_int(value: Any) -> Any:
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


class Codec:
    """Identity encoding."""

    def encode(self, value: Any) -> Any:
        return value

    def decode(self, value: Any) -> Any:
        return value

    def canonical(self, value: Any) -> Any:
        return self.decode(self.encode(value))


class BoolCodec(Codec):
    """Booleans stored as a pair of strings, e.g. enabled/disabled."""

    def __init__(self, true_value: str, false_value: str):
        self.true_value = true_value
        self.false_value = false_value

    def encode(self, value: Any) -> Any:
        return self.true_value if value else self.false_value

    def decode(self, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        return value == self.true_value


class StringMapCodec(Codec):
    """Renames individual enumeration values."""

    def __init__(self, mapping: dict[str, str]):
        self.mapping = mapping
        self.reverse = {v: k for k, v in mapping.items()}

    def encode(self, value: Any) -> Any:
        return self.mapping.get(value, value)

    def decode(self, value: Any) -> Any:
        return self.reverse.get(value, value)


class NameListCodec(Codec):
    """["a", "b"] <-> [{"name": "a"}, {"name": "b"}]."""

    def encode(self, value: Any) -> Any:
        return [{"name": str(v)} for v in value or []]

    def decode(self, value: Any) -> Any:
        return [_maybe_int(v["name"]) if isinstance(v, dict) else _maybe_int(v) for v in value or []]


class JoinCodec(Codec):
    """List joined into one device string."""

    def __init__(self, separator: str):
        self.separator = separator

    def encode(self, value: Any) -> Any:
        return self.separator.join(str(v) for v in value or [])

    def decode(self, value: Any) -> Any:
        if not value or value == "none":
            return []
        return [v.strip() for v in str(value).split(self.separator) if v.strip()]


class LocalOnlyCodec(Codec):
    """Route localOnly flag carried by the object's partition."""

    def encode(self, value: Any) -> Any:
        return LOCAL_ONLY if value else COMMON

    def decode(self, value: Any) -> Any:
        return value == LOCAL_ONLY


class VlanInterfacesCodec(Codec):

    def encode(self, value: Any) -> Any:
        interfaces = []
        for iface in value or []:
            if iface.get("tagged", False):
                interfaces.append({"name": iface["name"], "tagged": True})
            else:
                interfaces.append({"name": iface["name"], "untagged": True})
        return interfaces

    def decode(self, value: Any) -> Any:
        return [{"name": iface["name"], "tagged": bool(iface.get("tagged"))} for iface in value or []]


class UnicastCodec(Codec):

    def encode(self, value: Any) -> Any:
        return [{"ip": entry["address"], "port": entry.get("port", 1026)} for entry in value or []]

    def decode(self, value: Any) -> Any:
        if value == "none":
            return []
        return [{"address": entry["ip"], "port": entry.get("port", 1026)} for entry in value or []]


class ForwardZonesCodec(Codec):

    def encode(self, value: Any) -> Any:
        return [
            {"name": zone["name"], "nameservers": [{"name": ns} for ns in zone.get("nameservers", [])]}
            for zone in value or []
        ]

    def decode(self, value: Any) -> Any:
        return [
            {"name": zone["name"], "nameservers": [ns["name"] for ns in zone.get("nameservers", [])]}
            for zone in value or []
        ]


class PartitionAccessCodec(Codec):
    """{"all-partitions": {"role": "admin"}} <-> [{"name": ..., "role": ...}]."""

    def encode(self, value: Any) -> Any:
        return [{"name": name, "role": access.get("role")} for name, access in (value or {}).items()]

    def decode(self, value: Any) -> Any:
        return {entry["name"]: {"role": entry.get("role")} for entry in value or []}


class EntriesMapCodec(Codec):
    """Routing entry lists keyed by sequence number on the device."""

    def __init__(self, renames: Optional[dict[str, str]] = None, defaults: Optional[dict[str, Any]] = None):
        self.renames = renames or {}
        self.reverse = {v: k for k, v in self.renames.items()}
        self.defaults = defaults or {}

    def encode(self, value: Any) -> Any:
        entries = {}
        for entry in value or []:
            body = dict(self.defaults)
            for key, val in entry.items():
                if key != "name":
                    body[self.renames.get(key, key)] = copy.deepcopy(val)
            entries[str(entry["name"])] = body
        return entries

    def decode(self, value: Any) -> Any:
        entries = []
        for key, body in (value or {}).items():
            entry = {"name": _maybe_int(key)}
            for dev_key, val in (body or {}).items():
                entry[self.reverse.get(dev_key, dev_key)] = copy.deepcopy(val)
            entries.append(entry)
        return sorted(entries, key=lambda e: (str(type(e["name"])), e["name"]))


class FirewallRulesCodec(Codec):

    def encode(self, value: Any) -> Any:
        rules = []
        for rule in value or []:
            body = {
                "name": rule["name"],
                "action": rule.get("action", "accept"),
                "ipProtocol": rule.get("protocol", "any"),
                "log": "yes" if rule.get("loggingEnabled", False) else "no",
                "source": copy.deepcopy(rule.get("source", {})),
                "destination": copy.deepcopy(rule.get("destination", {})),
            }
            if rule.get("remark"):
                body["description"] = rule["remark"]
            rules.append(body)
        return rules

    def decode(self, value: Any) -> Any:
        rules = []
        for body in value or []:
            rule = {
                "name": body["name"],
                "action": body.get("action", "accept"),
                "protocol": body.get("ipProtocol", "any"),
                "loggingEnabled": body.get("log") == "yes",
                "source": copy.deepcopy(body.get("source", {})),
                "destination": copy.deepcopy(body.get("destination", {})),
            }
            if body.get("description"):
                rule["remark"] = body["description"]
            rules.append(rule)
        return rules


class ProberMembersCodec(Codec):

    def encode(self, value: Any) -> Any:
        return [
            {
                "name": member["server"],
                "order": index,
                "description": member.get("description", "none"),
                "enabled": member.get("enabled", True),
            }
            for index, member in enumerate(value or [])
        ]

    def decode(self, value: Any) -> Any:
        members = sorted(value or [], key=lambda m: m.get("order", 0))
        return [
            {
                "server": member["name"],
                "description": member.get("description", "none"),
                "enabled": member.get("enabled", True),
            }
            for member in members
        ]


class ServerDevicesCodec(Codec):

    def encode(self, value: Any) -> Any:
        return [
            {
                "name": str(index),
                "addresses": [{
                    "name": device["address"],
                    "translation": device.get("addressTranslation", "none"),
                }],
                "description": device.get("description", "none"),
            }
            for index, device in enumerate(value or [])
        ]

    def decode(self, value: Any) -> Any:
        devices = []
        for device in sorted(value or [], key=lambda d: _maybe_int(d.get("name", 0))):
            address = (device.get("addresses") or [{}])[0]
            devices.append({
                "address": address.get("name"),
                "addressTranslation": address.get("translation", "none"),
                "description": device.get("description", "none"),
            })
        return devices


class BgpAddressFamiliesCodec(Codec):

    def encode(self, value: Any) -> Any:
        return [
            {
                "name": family["internetProtocol"],
                "redistribute": [
                    {"name": entry["routingProtocol"], "routeMap": entry.get("routeMap", "none")}
                    for entry in family.get("redistributionList", [])
                ],
            }
            for family in value or []
        ]

    def decode(self, value: Any) -> Any:
        return [
            {
                "internetProtocol": family["name"],
                "redistributionList": [
                    {"routingProtocol": entry["name"], "routeMap": entry.get("routeMap", "none")}
                    for entry in family.get("redistribute", [])
                ],
            }
            for family in value or []
        ]


class BgpGracefulRestartCodec(Codec):

    def encode(self, value: Any) -> Any:
        value = value or {}
        return {
            "gracefulReset": "enabled" if value.get("gracefulResetEnabled", False) else "disabled",
            "restartTime": value.get("restartTime", 120),
            "stalepathTime": value.get("stalePathTime", 360),
        }

    def decode(self, value: Any) -> Any:
        value = value or {}
        return {
            "gracefulResetEnabled": value.get("gracefulReset") == "enabled",
            "restartTime": value.get("restartTime", 120),
            "stalePathTime": value.get("stalepathTime", 360),
        }


class BgpNeighborsCodec(Codec):

    def encode(self, value: Any) -> Any:
        return [{"name": n["address"], "peerGroup": n.get("peerGroup")} for n in value or []]

    def decode(self, value: Any) -> Any:
        return [{"address": n["name"], "peerGroup": n.get("peerGroup")} for n in value or []]


class BgpPeerGroupsCodec(Codec):

    def encode(self, value: Any) -> Any:
        groups = []
        for group in value or []:
            families = []
            for family in group.get("addressFamilies", []):
                route_map = family.get("routeMap") or {}
                families.append({
                    "name": family["internetProtocol"],
                    "routeMap": {"in": route_map.get("in", "none"), "out": route_map.get("out", "none")},
                    "softReconfigurationInbound": (
                        "enabled" if family.get("softReconfigurationInboundEnabled", False) else "disabled"
                    ),
                })
            groups.append({"name": group["name"], "remoteAs": group.get("remoteAS"), "addressFamily": families})
        return groups

    def decode(self, value: Any) -> Any:
        groups = []
        for group in value or []:
            families = []
            for family in group.get("addressFamily", []):
                route_map = family.get("routeMap") or {}
                families.append({
                    "internetProtocol": family["name"],
                    "routeMap": {"in": route_map.get("in", "none"), "out": route_map.get("out", "none")},
                    "softReconfigurationInboundEnabled": family.get("softReconfigurationInbound") == "enabled",
                })
            groups.append({"name": group["name"], "remoteAS": group.get("remoteAs"), "addressFamilies": families})
        return groups


class LdapCertCodec(Codec):
    """Inline certificate material referenced by its installed file path."""

    def encode(self, value: Any) -> Any:
        if not value:
            return "none"
        return value.get("path", "none")

    def decode(self, value: Any) -> Any:
        if not value or value == "none":
            return None
        return {"path": value}


class TableCodec(Codec):
    """Nested object translated through its own property table.

    Secret properties are encoded but never decoded; the device only
    returns them encrypted.
    """

    def __init__(self, properties: tuple):
        self.properties = properties

    def _codec(self, prop) -> Codec:
        return CODECS[prop.codec] if prop.codec else IDENTITY

    def encode(self, value: Any) -> Any:
        body = {}
        for prop in self.properties:
            val = (value or {}).get(prop.name)
            if val is None:
                continue
            body[prop.device_name] = self._codec(prop).encode(val)
        return body

    def decode(self, value: Any) -> Any:
        result = {}
        for prop in self.properties:
            if prop.secret or prop.device_name not in (value or {}):
                continue
            decoded = self._codec(prop).decode(value[prop.device_name])
            if decoded is not None:
                result[prop.name] = decoded
        return result

    def canonical(self, value: Any) -> Any:
        result = {}
        for prop in self.properties:
            val = (value or {}).get(prop.name, copy.deepcopy(prop.default))
            if val is None:
                continue
            if prop.codec == "ldap_cert":
                val = dict(val)
                val["path"] = full_path(LDAP_CERT_FILES[prop.name])
            elif prop.codec:
                val = self._codec(prop).canonical(val)
            result[prop.name] = val
        return result


class RadiusCodec(Codec):
    """RADIUS method: service type plus primary/secondary servers."""

    def canonical(self, value: Any) -> Any:
        value = value or {}
        result = {"serviceType": value.get("serviceType", RADIUS_DEFAULTS["serviceType"]), "servers": {}}
        for role in ("primary", "secondary"):
            server = (value.get("servers") or {}).get(role)
            if not server:
                continue
            entry = {"server": server.get("server"), "port": server.get("port", RADIUS_SERVER_DEFAULTS["port"])}
            if server.get("secret") is not None:
                entry["secret"] = server["secret"]
            result["servers"][role] = entry
        return result

    def server_body(self, name: str, server: dict[str, Any]) -> dict[str, Any]:
        body = {
            "name": name,
            "partition": COMMON,
            "server": server.get("server"),
            "port": server.get("port", RADIUS_SERVER_DEFAULTS["port"]),
        }
        if server.get("secret") is not None:
            body["secret"] = server["secret"]
        return body


IDENTITY = Codec()

CODECS: dict[str, Codec] = {
    "bool_enabled": BoolCodec("enabled", "disabled"),
    "bool_yes": BoolCodec("yes", "no"),
    "bool_str": BoolCodec("true", "false"),
    "bool_inverse_enabled": BoolCodec("disabled", "enabled"),
    "name_list": NameListCodec(),
    "join_colon": JoinCodec(":"),
    "monitor_rule": JoinCodec(" and "),
    "local_only": LocalOnlyCodec(),
    "vlan_interfaces": VlanInterfacesCodec(),
    "unicast": UnicastCodec(),
    "forward_zones": ForwardZonesCodec(),
    "partition_access": PartitionAccessCodec(),
    "as_path_entries": EntriesMapCodec(defaults={"action": "permit"}),
    "prefix_list_entries": EntriesMapCodec(
        renames={"prefixLengthRange": "prefixLenRange"},
        defaults={"action": "permit", "prefixLenRange": 0},
    ),
    "route_map_entries": EntriesMapCodec(defaults={"action": "permit"}),
    "firewall_rules": FirewallRulesCodec(),
    "prober_members": ProberMembersCodec(),
    "server_devices": ServerDevicesCodec(),
    "bgp_address_families": BgpAddressFamiliesCodec(),
    "bgp_graceful_restart": BgpGracefulRestartCodec(),
    "bgp_neighbors": BgpNeighborsCodec(),
    "bgp_peer_groups": BgpPeerGroupsCodec(),
    "ldap_cert": LdapCertCodec(),
    "auth_source_type": StringMapCodec({"activeDirectory": "active-directory"}),
}

CODECS["remote_users"] = TableCodec(REMOTE_USERS_PROPERTIES)
CODECS["tacacs"] = TableCodec(TACACS_PROPERTIES)
CODECS["ldap"] = TableCodec(LDAP_PROPERTIES)
CODECS["radius"] = RadiusCodec()


def get_codec(name: Optional[str]) -> Codec:
    """Codec by name; properties without one use the identity encoding."""
    if not name:
        return IDENTITY
    return CODECS[name]
