"""Static table of every configuration class the engine manages.

Each ConfigItem names the device-side resource path, the property name
translations and defaults, and the references other classes are allowed
to make. PRECEDENCE fixes the order in which classes are created or
modified; deletes run in the reverse order.
"""
from typing import Any, Iterator, Optional

from .schema import ConfigItem, Layout, PropertyDescriptor as P, ReferenceSpec as R

COMMON = "Common"
LOCAL_ONLY = "LOCAL_ONLY"

# Device paths outside of the class table
DEVICE_INFO_PATH = "/shared/identified-devices/config/device-info"
CM_DEVICE_PATH = "/tm/cm/device"
UPLOAD_PATH = "/shared/file-transfer/uploads"
DOWNLOADS_DIR = "/var/config/rest/downloads"
UNIX_RM_PATH = "/tm/util/unix-rm"
SSL_CERT_PATH = "/tm/sys/file/ssl-cert"
SSL_KEY_PATH = "/tm/sys/file/ssl-key"

AUTH_SOURCE_PATH = "/tm/auth/source"
REMOTE_USER_PATH = "/tm/auth/remote-user"
RADIUS_SERVER_PATH = "/tm/auth/radius-server"
RADIUS_PATH = "/tm/auth/radius"
TACACS_PATH = "/tm/auth/tacacs"
LDAP_PATH = "/tm/auth/ldap"
AUTH_DEVICE_PATHS = (
    AUTH_SOURCE_PATH, REMOTE_USER_PATH, RADIUS_SERVER_PATH, RADIUS_PATH, TACACS_PATH, LDAP_PATH,
)
SYSTEM_AUTH_NAME = "system-auth"
RADIUS_PRIMARY_NAME = "system_auth_name1"
RADIUS_SECONDARY_NAME = "system_auth_name2"

# Inline LDAP certificate material is installed under these file names
LDAP_CERT_FILES = {
    "sslCaCert": "do_ldapCaCert.crt",
    "sslClientCert": "do_ldapClientCert.crt",
    "sslClientKey": "do_ldapClientCert.key",
}

PROVISION_MODULES = (
    "afm", "am", "apm", "asm", "avr", "cgnat", "dos", "fps",
    "gtm", "ilx", "lc", "ltm", "pem", "sslo", "swg", "urldb",
)

GSLB_MONITOR_TYPES = ("http", "https", "gateway-icmp", "tcp", "udp")


# --- Authentication sub-object tables ---

RADIUS_DEFAULTS = {"serviceType": "default"}
RADIUS_SERVER_DEFAULTS = {"port": 1812}

TACACS_PROPERTIES = (
    P("accounting", "accounting", "send-to-first-server"),
    P("authentication", "authentication", "use-first-server"),
    P("debug", "debug", False, codec="bool_enabled"),
    P("encryption", "encryption", True, codec="bool_enabled"),
    P("protocol", "protocol"),
    P("secret", "secret", secret=True),
    P("servers", "servers", [], unordered=True),
    P("service", "service"),
)

LDAP_PROPERTIES = (
    P("bindDn", "bindDn", "none"),
    P("bindPassword", "bindPw", secret=True),
    P("bindTimeout", "bindTimeout", 30),
    P("checkBindPassword", "checkHostAttr", False, codec="bool_enabled"),
    P("checkRemoteRole", "checkRolesGroup", False, codec="bool_enabled"),
    P("filter", "filter", "none"),
    P("groupDn", "groupDn", "none"),
    P("groupMemberAttribute", "groupMemberAttribute", "none"),
    P("idleTimeout", "idleTimeout", 3600),
    P("ignoreAuthInfoUnavailable", "ignoreAuthInfoUnavail", False, codec="bool_yes"),
    P("ignoreUnknownUser", "ignoreUnknownUser", False, codec="bool_enabled"),
    P("loginAttribute", "loginAttribute", "none"),
    P("port", "port", 389),
    P("searchBaseDn", "searchBaseDn", "none"),
    P("searchScope", "scope", "sub"),
    P("searchTimeout", "searchTimeout", 30),
    P("servers", "servers", [], unordered=True),
    P("ssl", "ssl", "disabled"),
    P("sslCaCert", "sslCaCertFile", codec="ldap_cert"),
    P("sslCheckPeer", "sslCheckPeer", False, codec="bool_enabled"),
    P("sslCiphers", "sslCiphers", [], codec="join_colon"),
    P("sslClientCert", "sslClientCert", codec="ldap_cert"),
    P("sslClientKey", "sslClientKey", codec="ldap_cert"),
    P("userTemplate", "userTemplate", "none"),
    P("version", "version", 3),
)

REMOTE_USERS_PROPERTIES = (
    P("role", "defaultRole", "no-access"),
    P("partitionAccess", "defaultPartition", "all"),
    P("terminalAccess", "remoteConsoleAccess", "disabled"),
)


def _item(schema_class: str, domain: str, path: str, *properties: P, **kwargs: Any) -> ConfigItem:
    return ConfigItem(schema_class=schema_class, domain=domain, path=path, properties=tuple(properties), **kwargs)


_ITEMS = [
    # --- system ---
    _item(
        "System", "system", "/tm/sys/global-settings",
        P("hostname", "hostname"),
        P("consoleInactivityTimeout", "consoleInactivityTimeout", 0),
        P("guiAuditLog", "guiAudit", False, codec="bool_enabled", legacy_name="guiAudit"),
        P("mgmtDhcpEnabled", "mgmtDhcp", codec="bool_enabled"),
        P("cliInactivityTimeout", "idleTimeout", 0, path="/tm/cli/global-settings"),
        P("autoCheck", "autoCheck", True, codec="bool_enabled", path="/tm/sys/software/update"),
        P("autoPhonehome", "autoPhonehome", codec="bool_enabled", path="/tm/sys/software/update"),
        layout=Layout.SINGLETON,
    ),
    _item(
        "DNS", "system", "/tm/sys/dns",
        P("nameServers", "nameServers", []),
        P("search", "search", []),
        layout=Layout.SINGLETON,
    ),
    _item(
        "NTP", "system", "/tm/sys/ntp",
        P("servers", "servers", []),
        P("timezone", "timezone", "UTC"),
        layout=Layout.SINGLETON,
    ),
    _item(
        "Provision", "system", "/tm/sys/provision",
        *(P(module, module) for module in PROVISION_MODULES),
        layout=Layout.MODULE_LEVELS,
        partitioned=False,
    ),
    _item(
        "ManagementRoute", "system", "/tm/sys/management-route",
        P("gw", "gateway", legacy_name="gateway"),
        P("network", "network", "default"),
        P("mtu", "mtu", 0),
        protected=frozenset({"default"}),
    ),
    _item(
        "User", "system", "/tm/auth/user",
        P("password", "password", secret=True, create_only=True),
        P("shell", "shell", "tmsh"),
        P("partitionAccess", "partitionAccess", codec="partition_access"),
        protected=frozenset({"admin", "root"}),
        partitioned=False,
    ),

    # --- firewall ---
    _item(
        "FirewallAddressList", "firewall", "/tm/security/firewall/address-list",
        P("remark", "description", ""),
        P("addresses", "addresses", [], codec="name_list", unordered=True),
        P("fqdns", "fqdns", [], codec="name_list", unordered=True),
        P("geo", "geo", [], codec="name_list", unordered=True),
    ),
    _item(
        "FirewallPortList", "firewall", "/tm/security/firewall/port-list",
        P("remark", "description", ""),
        P("ports", "ports", [], codec="name_list", unordered=True),
    ),
    _item(
        "FirewallPolicy", "firewall", "/tm/security/firewall/policy",
        P("remark", "description", ""),
        P("rules", "rules", [], codec="firewall_rules"),
        references=(
            R("rules[].source.addressLists[]", "FirewallAddressList"),
            R("rules[].source.portLists[]", "FirewallPortList"),
            R("rules[].destination.addressLists[]", "FirewallAddressList"),
            R("rules[].destination.portLists[]", "FirewallPortList"),
        ),
    ),

    # --- network (layer 2) ---
    _item(
        "Trunk", "network", "/tm/net/trunk",
        P("interfaces", "interfaces", [], unordered=True),
        P("lacpEnabled", "lacp", False, codec="bool_enabled"),
        P("lacpMode", "lacpMode", "active"),
        P("lacpTimeout", "lacpTimeout", "long"),
        P("linkSelectPolicy", "linkSelectPolicy", "auto"),
        P("spanningTreeEnabled", "stp", True, codec="bool_enabled"),
    ),
    _item(
        "VLAN", "network", "/tm/net/vlan",
        P("tag", "tag"),
        P("mtu", "mtu", 1500),
        P("interfaces", "interfaces", [], codec="vlan_interfaces", unordered=True),
        P("cmpHash", "cmpHash", "default"),
        P("failsafeEnabled", "failsafe", False, codec="bool_enabled", legacy_name="failsafe"),
        P("failsafeAction", "failsafeAction", "failover-restart-tm"),
        P("failsafeTimeout", "failsafeTimeout", 90),
    ),
    _item(
        "RouteDomain", "network", "/tm/net/route-domain",
        P("id", "id", replace_on_change=True),
        P("parent", "parent", "none"),
        P("connectionLimit", "connectionLimit", 0),
        P("strict", "strict", True, codec="bool_enabled"),
        P("vlans", "vlans", [], unordered=True),
        P("routingProtocols", "routingProtocol", [], unordered=True, legacy_name="routingProtocol"),
        protected=frozenset({"0"}),
        references=(R("vlans[]", "VLAN"), R("parent", "RouteDomain")),
    ),

    # --- dsc (traffic groups) ---
    _item(
        "TrafficGroup", "dsc", "/tm/cm/traffic-group",
        P("autoFailbackEnabled", "autoFailbackEnabled", False, codec="bool_str"),
        P("autoFailbackTime", "autoFailbackTime", 60),
        P("failoverMethod", "failoverMethod", "ha-order"),
        P("haLoadFactor", "haLoadFactor", 1),
        P("haOrder", "haOrder", []),
        protected=frozenset({"traffic-group-1", "traffic-group-local-only"}),
    ),

    # --- network (layer 3) ---
    _item(
        "SelfIp", "network", "/tm/net/self",
        P("address", "address"),
        P("vlan", "vlan"),
        P("trafficGroup", "trafficGroup", "traffic-group-local-only", legacy_name="traffic-group"),
        P("allowService", "allowService", "none"),
        P("enforcedFirewallPolicy", "fwEnforcedPolicy", "none"),
        references=(
            R("vlan", "VLAN"),
            R("trafficGroup", "TrafficGroup"),
            R("enforcedFirewallPolicy", "FirewallPolicy"),
        ),
    ),
    _item(
        "Route", "network", "/tm/net/route",
        P("gw", "gw"),
        P("network", "network", "default"),
        P("mtu", "mtu", 0),
        P("target", "tmInterface", legacy_name="tmInterface"),
        P("localOnly", "partition", False, codec="local_only"),
        references=(R("target", "VLAN"),),
    ),
    _item(
        "DNS_Resolver", "network", "/tm/net/dns-resolver",
        P("answerDefaultZones", "answerDefaultZones", False, codec="bool_yes"),
        P("cacheMaxNegativeTtl", "cacheMaxNegativeTtl", 900),
        P("cacheMaxTtl", "cacheMaxTtl", 604800),
        P("forwardZones", "forwardZones", [], codec="forward_zones", unordered=True),
        P("randomizeQueryNameCase", "randomizeQueryNameCase", True, codec="bool_yes"),
        P("routeDomain", "routeDomain", "0"),
        P("useIpv4", "useIpv4", True, codec="bool_yes"),
        P("useIpv6", "useIpv6", True, codec="bool_yes"),
        P("useTcp", "useTcp", True, codec="bool_yes"),
        P("useUdp", "useUdp", True, codec="bool_yes"),
        references=(R("routeDomain", "RouteDomain"),),
    ),
    _item(
        "RoutingAsPath", "network", "/tm/net/routing/as-path",
        P("entries", "entries", [], codec="as_path_entries", unordered=True),
        P("routeDomain", "routeDomain", "0"),
        references=(R("routeDomain", "RouteDomain"),),
    ),
    _item(
        "RoutingPrefixList", "network", "/tm/net/routing/prefix-list",
        P("entries", "entries", [], codec="prefix_list_entries", unordered=True),
        P("routeDomain", "routeDomain", "0"),
        references=(R("routeDomain", "RouteDomain"),),
    ),
    _item(
        "RouteMap", "network", "/tm/net/routing/route-map",
        P("entries", "entries", [], codec="route_map_entries", unordered=True),
        P("routeDomain", "routeDomain", "0"),
        references=(
            R("entries[].match.asPath", "RoutingAsPath"),
            R("entries[].match.ipv4.address.prefixList", "RoutingPrefixList"),
            R("entries[].match.ipv4.nextHop.prefixList", "RoutingPrefixList"),
            R("entries[].match.ipv6.address.prefixList", "RoutingPrefixList"),
            R("entries[].match.ipv6.nextHop.prefixList", "RoutingPrefixList"),
            R("routeDomain", "RouteDomain"),
        ),
    ),
    _item(
        "RoutingBGP", "network", "/tm/net/routing/bgp",
        P("addressFamilies", "addressFamily", [], codec="bgp_address_families", unordered=True),
        P("gracefulRestart", "gracefulRestart", codec="bgp_graceful_restart"),
        P("holdTime", "holdTime", 90),
        P("keepAlive", "keepAlive", 30),
        P("localAS", "localAs", replace_on_change=True, legacy_name="localAs"),
        P("neighbors", "neighbor", [], codec="bgp_neighbors", unordered=True),
        P("peerGroups", "peerGroup", [], codec="bgp_peer_groups", unordered=True),
        P("routeDomain", "routeDomain", "0"),
        P("routerId", "routerId", "any6"),
        references=(
            R("addressFamilies[].redistributionList[].routeMap", "RouteMap"),
            R("peerGroups[].addressFamilies[].routeMap.in", "RouteMap"),
            R("peerGroups[].addressFamilies[].routeMap.out", "RouteMap"),
            R("routeDomain", "RouteDomain"),
        ),
    ),
    _item(
        "MirrorIp", "network", CM_DEVICE_PATH,
        P("primaryIp", "mirrorIp", "any6"),
        P("secondaryIp", "mirrorSecondaryIp", "any6"),
        layout=Layout.SELF_DEVICE,
    ),

    # --- dsc (device trust and failover) ---
    _item(
        "ConfigSync", "dsc", CM_DEVICE_PATH,
        P("configsyncIp", "configsyncIp", "none"),
        layout=Layout.SELF_DEVICE,
    ),
    _item(
        "FailoverUnicast", "dsc", CM_DEVICE_PATH,
        P("addressPorts", "unicastAddress", [], codec="unicast", unordered=True),
        layout=Layout.SELF_DEVICE,
    ),
    _item(
        "FailoverMulticast", "dsc", CM_DEVICE_PATH,
        P("interface", "multicastInterface", "none"),
        P("address", "multicastIp", "any6"),
        P("port", "multicastPort", 0),
        layout=Layout.SELF_DEVICE,
    ),
    _item(
        "DeviceGroup", "dsc", "/tm/cm/device-group",
        P("type", "type", "sync-failover"),
        P("members", "devices", [], codec="name_list", unordered=True, legacy_name="devices"),
        P("autoSync", "autoSync", False, codec="bool_enabled"),
        P("saveOnAutoSync", "saveOnAutoSync", False, codec="bool_str"),
        P("networkFailover", "networkFailover", False, codec="bool_enabled"),
        P("asmSync", "asmSync", False, codec="bool_enabled"),
        P("fullLoadOnSync", "fullLoadOnSync", False, codec="bool_str"),
        protected=frozenset({"device_trust_group", "gtm", "datasync-global-dg"}),
    ),

    # --- authentication ---
    _item(
        "RemoteAuthRole", "authentication", "/tm/auth/remote-role/role-info",
        P("attribute", "attribute"),
        P("console", "console", "disabled"),
        P("lineOrder", "lineOrder"),
        P("remoteAccess", "deny", False, codec="bool_inverse_enabled"),
        P("role", "role"),
        P("userPartition", "userPartition", "all"),
        partitioned=False,
    ),
    _item(
        "Authentication", "authentication", AUTH_SOURCE_PATH,
        P("enabledSourceType", "type", "local", codec="auth_source_type"),
        P("fallback", "fallback", False, codec="bool_str"),
        P("remoteUsersDefaults", "remoteUsersDefaults", codec="remote_users", path=REMOTE_USER_PATH),
        P("radius", "radius", codec="radius"),
        P("tacacs", "tacacs", codec="tacacs"),
        P("ldap", "ldap", codec="ldap"),
        layout=Layout.COMPOSITE,
    ),

    # --- gslb ---
    _item(
        "GSLBGlobals", "gslb", "/tm/gtm/global-settings/general",
        P("synchronizationEnabled", "synchronization", False, codec="bool_yes"),
        P("synchronizationGroupName", "synchronizationGroupName", "default"),
        P("synchronizationTimeTolerance", "synchronizationTimeTolerance", 10),
        P("synchronizationTimeout", "synchronizationTimeout", 180),
        layout=Layout.SINGLETON,
    ),
    _item(
        "GSLBMonitor", "gslb", "/tm/gtm/monitor",
        P("monitorType", "monitorType", selector=True),
        P("target", "destination", "*:*"),
        P("interval", "interval", 30),
        P("timeout", "timeout", 120),
        P("probeTimeout", "probeTimeout", 5),
        P("ignoreDownResponseEnabled", "ignoreDownResponse", False, codec="bool_enabled"),
        P("transparent", "transparent", False, codec="bool_enabled"),
        P("reverseEnabled", "reverse", False, codec="bool_enabled"),
        P("send", "send"),
        P("receive", "recv"),
        protected=frozenset({"bigip", "http", "https", "gateway_icmp", "tcp", "udp"}),
        variants=GSLB_MONITOR_TYPES,
    ),
    _item(
        "GSLBDataCenter", "gslb", "/tm/gtm/datacenter",
        P("enabled", "enabled", True),
        P("location", "location", ""),
        P("contact", "contact", ""),
        P("proberPreferred", "proberPreference", "inside-datacenter"),
        P("proberFallback", "proberFallback", "any-available"),
        P("proberPool", "proberPool", "none"),
        references=(R("proberPool", "GSLBProberPool"),),
    ),
    _item(
        "GSLBServer", "gslb", "/tm/gtm/server",
        P("enabled", "enabled", True),
        P("dataCenter", "datacenter"),
        P("devices", "devices", [], codec="server_devices"),
        P("serverType", "product", "bigip"),
        P("proberPreferred", "proberPreference", "inherit"),
        P("proberFallback", "proberFallback", "inherit"),
        P("proberPool", "proberPool", "none"),
        P("monitors", "monitor", [], codec="monitor_rule", unordered=True),
        P("virtualServerDiscoveryMode", "virtualServerDiscovery", "disabled"),
        P("exposeRouteDomainsEnabled", "exposeRouteDomains", False, codec="bool_yes"),
        references=(
            R("dataCenter", "GSLBDataCenter"),
            R("monitors[]", "GSLBMonitor"),
            R("proberPool", "GSLBProberPool"),
        ),
    ),
    _item(
        "GSLBProberPool", "gslb", "/tm/gtm/prober-pool",
        P("enabled", "enabled", True),
        P("lbMode", "loadBalancingMode", "global-availability"),
        P("members", "members", [], codec="prober_members"),
        references=(R("members[].server", "GSLBServer"),),
    ),
]

SCHEMA_MAP: dict[str, ConfigItem] = {item.schema_class: item for item in _ITEMS}

# Creation order; deletes walk it backwards
PRECEDENCE: list[str] = [item.schema_class for item in _ITEMS]

DOMAINS: list[str] = list(dict.fromkeys(item.domain for item in _ITEMS))

NAMELESS_CLASSES = frozenset(item.schema_class for item in _ITEMS if item.nameless)


def get_item(schema_class: str) -> ConfigItem:
    """Look up a class descriptor, raising KeyError for unknown classes."""
    try:
        return SCHEMA_MAP[schema_class]
    except KeyError:
        raise KeyError(f"Unknown configuration class: {schema_class}") from None


def item_path(item: ConfigItem, name: str, partition: str = COMMON) -> str:
    """Device path of one named object of a collection."""
    if not item.partitioned:
        return f"{item.path}/{name}"
    return f"{item.path}/~{partition}~{name}"


def full_path(name: str, partition: str = COMMON) -> str:
    return f"/{partition}/{name}"


def normalize_ref(value: Any) -> Any:
    """Normalize a reference to "/Common/name"; "none" and empty values pass through."""
    if value is None or isinstance(value, bool):
        return value
    value = str(value)
    if value in ("", "none") or value.startswith("/"):
        return value
    return full_path(value)


def ref_name(value: str) -> str:
    """Object name of a "/Partition/name" reference."""
    return str(value).rsplit("/", 1)[-1]


def _split(path: str) -> list[tuple[str, bool]]:
    segments = []
    for piece in path.split("."):
        if piece.endswith("[]"):
            segments.append((piece[:-2], True))
        else:
            segments.append((piece, False))
    return segments


def iter_references(props: dict[str, Any], path: str) -> Iterator[Any]:
    """Yield every value found at a reference path."""
    def walk(node: Any, segments: list[tuple[str, bool]]) -> Iterator[Any]:
        if not segments:
            yield node
            return
        if not isinstance(node, dict):
            return
        key, is_list = segments[0]
        value = node.get(key)
        if value is None:
            return
        if is_list:
            for element in value if isinstance(value, list) else []:
                yield from walk(element, segments[1:])
        else:
            yield from walk(value, segments[1:])

    for value in walk(props, _split(path)):
        if value is not None:
            yield value


def map_references(props: dict[str, Any], path: str, fn) -> None:
    """Replace every value at a reference path with fn(value), in place."""
    def walk(node: Any, segments: list[tuple[str, bool]]) -> None:
        if not isinstance(node, dict) or not segments:
            return
        key, is_list = segments[0]
        if key not in node or node[key] is None:
            return
        rest = segments[1:]
        if is_list:
            if not isinstance(node[key], list):
                return
            if rest:
                for element in node[key]:
                    walk(element, rest)
            else:
                node[key] = [fn(element) for element in node[key]]
        elif rest:
            walk(node[key], rest)
        else:
            node[key] = fn(node[key])

    walk(props, _split(path))


def protected_names(schema_class: str) -> frozenset:
    item = SCHEMA_MAP.get(schema_class)
    return item.protected if item else frozenset()


def find_class(schema_class: str) -> Optional[ConfigItem]:
    return SCHEMA_MAP.get(schema_class)
