"""Tests for the domain handlers."""
import base64

import pytest
from mcp_declarative_onboarding.config_engine.errors import ApplyError
from mcp_declarative_onboarding.config_engine.schema import ChangeType, DeviceConfig, Operation, PlanSlice
from mcp_declarative_onboarding.config_engine.translator import ConfigTranslator
from mcp_declarative_onboarding.devices.memory import InMemoryDeviceClient
from mcp_declarative_onboarding.handlers import (
    AuthHandler,
    DscHandler,
    GslbHandler,
    NetworkHandler,
    SystemHandler,
    create_handlers,
)


def plan_slice(domain, operations, desired=None, current=None):
    return PlanSlice(
        domain=domain,
        operations=operations,
        desired=desired or DeviceConfig(),
        current=current or DeviceConfig(),
    )


def desired_auth(auth):
    decl = {
        "schemaVersion": "1.23.0",
        "class": "Device",
        "Common": {"class": "Tenant", "auth": {"class": "Authentication", **auth}},
    }
    return ConfigTranslator().to_device_config(decl).get("Authentication")


def mutations(client):
    return [(c["method"], c["path"]) for c in client.mutations]


class TestRegistry:
    """Tests for the handler registry."""

    def test_one_handler_per_domain(self):
        """create_handlers() covers every domain."""
        handlers = create_handlers()

        assert set(handlers) == {"system", "firewall", "network", "dsc", "authentication", "gslb"}
        assert all(h.domain == domain for domain, h in handlers.items())


class TestSystemHandler:
    """Tests for system settings."""

    @pytest.mark.asyncio
    async def test_singleton_written_per_path(self):
        """System settings spread over paths are patched one path at a time."""
        client = InMemoryDeviceClient()
        op = Operation("System", None, ChangeType.MODIFY, {"hostname": "bigip2.example.com", "cliInactivityTimeout": 600})

        await SystemHandler().process(plan_slice("system", [op]), client)

        assert mutations(client) == [
            ("PATCH", "/tm/sys/global-settings"),
            ("PATCH", "/tm/cli/global-settings"),
        ]
        assert client.singleton("/tm/sys/global-settings")["hostname"] == "bigip2.example.com"
        assert client.singleton("/tm/cli/global-settings")["idleTimeout"] == 600

    @pytest.mark.asyncio
    async def test_provision_modules_deprovisioned_first(self):
        """Modules set to none are applied before the others and a reboot is flagged."""
        client = InMemoryDeviceClient()
        op = Operation("Provision", None, ChangeType.MODIFY, {"gtm": "nominal", "ltm": "none"})

        outcome = await SystemHandler().process(plan_slice("system", [op]), client)

        assert mutations(client) == [
            ("PATCH", "/tm/sys/provision/ltm"),
            ("PATCH", "/tm/sys/provision/gtm"),
        ]
        assert client.find("/tm/sys/provision", "gtm")["level"] == "nominal"
        assert outcome.reboot_required is True

    @pytest.mark.asyncio
    async def test_user_password_only_on_create(self):
        """Passwords are sent when a user is created, never on modify."""
        client = InMemoryDeviceClient()
        create = Operation("User", "jdoe", ChangeType.CREATE, {"password": "s3cret", "shell": "tmsh"})
        modify = Operation("User", "jdoe", ChangeType.MODIFY, {"password": "n3w", "shell": "bash"})

        await SystemHandler().process(plan_slice("system", [create, modify]), client)

        assert client.calls[0]["body"]["password"] == "s3cret"
        assert client.calls[-1]["method"] == "PATCH"
        assert client.calls[-1]["body"] == {"shell": "bash"}

    @pytest.mark.asyncio
    async def test_device_failure_becomes_apply_error(self):
        """Client errors surface as ApplyError naming the failing object."""
        client = InMemoryDeviceClient()
        client.fail_on("PATCH", "/tm/sys/dns")
        op = Operation("DNS", None, ChangeType.MODIFY, {"nameServers": ["192.0.2.10"]})

        with pytest.raises(ApplyError) as exc_info:
            await SystemHandler().process(plan_slice("system", [op]), client)

        assert exc_info.value.schema_class == "DNS"
        assert exc_info.value.path == "/tm/sys/dns"


class TestNetworkHandler:
    """Tests for networking."""

    @pytest.mark.asyncio
    async def test_route_domain_id_change_replaces(self):
        """Changing a route domain id deletes and re-creates it."""
        client = InMemoryDeviceClient()
        await client.create("/tm/net/route-domain", {"name": "rd1", "partition": "Common", "id": 100})
        client.reset_calls()
        op = Operation("RouteDomain", "rd1", ChangeType.MODIFY, {"id": 200})
        desired = DeviceConfig({"RouteDomain": {"rd1": {"id": 200, "strict": True}}})
        current = DeviceConfig({"RouteDomain": {"rd1": {"id": 100, "strict": True}}})

        await NetworkHandler().process(plan_slice("network", [op], desired, current), client)

        assert mutations(client) == [
            ("DELETE", "/tm/net/route-domain/~Common~rd1"),
            ("POST", "/tm/net/route-domain"),
        ]
        assert client.find("/tm/net/route-domain", "rd1")["id"] == 200

    @pytest.mark.asyncio
    async def test_local_only_route_partition(self):
        """Routes with localOnly live in the LOCAL_ONLY partition."""
        client = InMemoryDeviceClient()
        op = Operation("Route", "r1", ChangeType.CREATE, {"gw": "10.0.0.1", "network": "default", "localOnly": True})

        await NetworkHandler().process(plan_slice("network", [op]), client)

        route = client.find("/tm/net/route", "r1")
        assert route["partition"] == "LOCAL_ONLY"
        assert route["fullPath"] == "/LOCAL_ONLY/r1"

    @pytest.mark.asyncio
    async def test_local_only_route_deleted_from_its_partition(self):
        """Deletes address the partition the route was read from."""
        client = InMemoryDeviceClient()
        await client.create("/tm/net/route", {"name": "r1", "partition": "LOCAL_ONLY", "gw": "10.0.0.1"})
        client.reset_calls()
        op = Operation("Route", "r1", ChangeType.DELETE, {"gw": "10.0.0.1", "localOnly": True})
        current = DeviceConfig({"Route": {"r1": {"gw": "10.0.0.1", "localOnly": True}}})

        await NetworkHandler().process(plan_slice("network", [op], current=current), client)

        assert mutations(client) == [("DELETE", "/tm/net/route/~LOCAL_ONLY~r1")]
        assert client.find("/tm/net/route", "r1") is None

    @pytest.mark.asyncio
    async def test_interface_routes_created_first(self):
        """Routes with a target interface are created before gateway routes."""
        client = InMemoryDeviceClient()
        await client.create("/tm/net/vlan", {"name": "internal", "partition": "Common", "tag": 100})
        client.reset_calls()
        gateway = Operation("Route", "viaGateway", ChangeType.CREATE, {"gw": "10.1.0.1", "network": "10.2.0.0/16"})
        interface = Operation("Route", "viaVlan", ChangeType.CREATE,
                              {"target": "/Common/internal", "network": "10.1.0.0/24"})

        await NetworkHandler().process(plan_slice("network", [gateway, interface]), client)

        assert [c["body"]["name"] for c in client.mutations] == ["viaVlan", "viaGateway"]

    @pytest.mark.asyncio
    async def test_modify_is_partial(self):
        """Modifies patch only the changed properties."""
        client = InMemoryDeviceClient()
        await client.create("/tm/net/vlan", {"name": "internal", "partition": "Common", "tag": 100, "mtu": 1500})
        client.reset_calls()
        op = Operation("VLAN", "internal", ChangeType.MODIFY, {"mtu": 9000})

        await NetworkHandler().process(plan_slice("network", [op]), client)

        assert client.calls == [{"method": "PATCH", "path": "/tm/net/vlan/~Common~internal", "body": {"mtu": 9000}}]


class TestDscHandler:
    """Tests for clustering settings."""

    @pytest.mark.asyncio
    async def test_config_sync_on_self_device(self):
        """ConfigSync patches the local cm device object."""
        client = InMemoryDeviceClient()
        op = Operation("ConfigSync", None, ChangeType.MODIFY, {"configsyncIp": "10.1.0.10"})

        await DscHandler().process(plan_slice("dsc", [op]), client)

        assert mutations(client) == [("PATCH", "/tm/cm/device/~Common~bigip1.localdomain")]
        assert client.find("/tm/cm/device", "bigip1.localdomain")["configsyncIp"] == "10.1.0.10"

    @pytest.mark.asyncio
    async def test_device_group_type_change_replaces(self):
        """A device group's type cannot be changed in place."""
        client = InMemoryDeviceClient()
        await client.create("/tm/cm/device-group", {"name": "failoverGroup", "partition": "Common", "type": "sync-failover"})
        client.reset_calls()
        op = Operation("DeviceGroup", "failoverGroup", ChangeType.MODIFY, {"type": "sync-only"})
        desired = DeviceConfig({"DeviceGroup": {"failoverGroup": {"type": "sync-only", "members": []}}})
        current = DeviceConfig({"DeviceGroup": {"failoverGroup": {"type": "sync-failover", "members": []}}})

        await DscHandler().process(plan_slice("dsc", [op], desired, current), client)

        assert mutations(client) == [
            ("DELETE", "/tm/cm/device-group/~Common~failoverGroup"),
            ("POST", "/tm/cm/device-group"),
        ]
        assert client.find("/tm/cm/device-group", "failoverGroup")["type"] == "sync-only"


class TestAuthHandler:
    """Tests for remote authentication."""

    RADIUS_BOTH = {
        "serviceType": "administrative",
        "servers": {
            "primary": {"server": "192.0.2.10", "secret": "primarySecret"},
            "secondary": {"server": "192.0.2.11", "port": 1813, "secret": "secondarySecret"},
        },
    }
    RADIUS_PRIMARY = {
        "serviceType": "administrative",
        "servers": {"primary": {"server": "192.0.2.10", "secret": "primarySecret"}},
    }

    @pytest.mark.asyncio
    async def test_radius_servers_before_aggregate(self):
        """Servers are written before the system-auth object that lists them."""
        client = InMemoryDeviceClient()
        op = Operation("Authentication", None, ChangeType.MODIFY, {"radius": self.RADIUS_BOTH})

        await AuthHandler().process(plan_slice("authentication", [op]), client)

        assert mutations(client)[-1] == ("POST", "/tm/auth/radius")
        assert sorted(mutations(client)[:2]) == [("POST", "/tm/auth/radius-server")] * 2
        aggregate = client.find("/tm/auth/radius", "system-auth")
        assert aggregate["servers"] == ["/Common/system_auth_name1", "/Common/system_auth_name2"]
        assert aggregate["serviceType"] == "administrative"

    @pytest.mark.asyncio
    async def test_radius_secondary_removed_after_aggregate(self):
        """A dropped secondary server is deleted after the aggregate stops naming it."""
        client = InMemoryDeviceClient()
        handler = AuthHandler()
        await handler.process(
            plan_slice("authentication", [Operation("Authentication", None, ChangeType.MODIFY, {"radius": self.RADIUS_BOTH})]),
            client,
        )
        client.reset_calls()

        op = Operation("Authentication", None, ChangeType.MODIFY, {"radius": self.RADIUS_PRIMARY})
        await handler.process(plan_slice("authentication", [op]), client)

        calls = mutations(client)
        aggregate = calls.index(("PATCH", "/tm/auth/radius/~Common~system-auth"))
        removal = calls.index(("DELETE", "/tm/auth/radius-server/~Common~system_auth_name2"))
        assert aggregate < removal
        assert client.find("/tm/auth/radius-server", "system_auth_name2") is None

    @pytest.mark.asyncio
    async def test_radius_server_defaults(self):
        """Server entries carry their secret and default to port 1812."""
        client = InMemoryDeviceClient()
        op = Operation("Authentication", None, ChangeType.MODIFY, {"radius": self.RADIUS_PRIMARY})

        await AuthHandler().process(plan_slice("authentication", [op]), client)

        server = client.find("/tm/auth/radius-server", "system_auth_name1")
        assert server["secret"] == "primarySecret"
        assert server["port"] == 1812

    @pytest.mark.asyncio
    async def test_source_after_method(self):
        """The auth source switches only after its method object exists."""
        client = InMemoryDeviceClient()
        props = desired_auth({"enabledSourceType": "radius", "fallback": True, "radius": self.RADIUS_PRIMARY})
        op = Operation("Authentication", None, ChangeType.MODIFY, props)

        await AuthHandler().process(plan_slice("authentication", [op]), client)

        assert mutations(client)[-1] == ("PATCH", "/tm/auth/source")
        assert client.singleton("/tm/auth/source") == {"type": "radius", "fallback": "true"}

    @pytest.mark.asyncio
    async def test_ldap_certificate_installed(self):
        """Inline certificates are uploaded, installed and the upload removed."""
        client = InMemoryDeviceClient()
        pem = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----"
        props = desired_auth({
            "enabledSourceType": "ldap",
            "ldap": {
                "servers": ["ldap.example.com"],
                "bindPassword": "bindSecret",
                "sslCaCert": {"base64": base64.b64encode(pem.encode()).decode()},
            },
        })
        op = Operation("Authentication", None, ChangeType.MODIFY, {"ldap": props["ldap"]})

        await AuthHandler().process(plan_slice("authentication", [op]), client)

        assert mutations(client) == [
            ("POST", "/shared/file-transfer/uploads/do_ldapCaCert.crt"),
            ("POST", "/tm/sys/file/ssl-cert"),
            ("POST", "/tm/util/unix-rm"),
            ("POST", "/tm/auth/ldap"),
        ]
        assert client.calls[0]["body"] == {"content": pem}
        assert client.uploads == {}
        cert = client.find("/tm/sys/file/ssl-cert", "do_ldapCaCert.crt")
        assert cert["sourcePath"] == "file:/var/config/rest/downloads/do_ldapCaCert.crt"
        ldap = client.find("/tm/auth/ldap", "system-auth")
        assert ldap["sslCaCertFile"] == "/Common/do_ldapCaCert.crt"
        assert ldap["bindPw"] == "bindSecret"

    @pytest.mark.asyncio
    async def test_invalid_certificate_content(self):
        """Undecodable certificate content fails the apply."""
        client = InMemoryDeviceClient()
        ldap = {"servers": ["ldap.example.com"], "sslCaCert": {"base64": "abc", "path": "/Common/do_ldapCaCert.crt"}}
        op = Operation("Authentication", None, ChangeType.MODIFY, {"ldap": ldap})

        with pytest.raises(ApplyError):
            await AuthHandler().process(plan_slice("authentication", [op]), client)

        assert client.mutations == []

    @pytest.mark.asyncio
    async def test_remote_roles_applied(self):
        """Independent role entries are all written."""
        client = InMemoryDeviceClient()
        ops = [
            Operation("RemoteAuthRole", f"role{i}", ChangeType.CREATE,
                      {"attribute": f"memberOf=cn=group{i}", "lineOrder": i, "role": "guest"})
            for i in range(1, 4)
        ]

        outcome = await AuthHandler(max_parallel=2).process(plan_slice("authentication", ops), client)

        assert outcome.operations == 3
        assert sorted(b["name"] for b in client.items("/tm/auth/remote-role/role-info")) == ["role1", "role2", "role3"]


class TestGslbHandler:
    """Tests for GSLB."""

    @pytest.mark.asyncio
    async def test_prober_pool_assigned_after_pool_exists(self):
        """Data centers get their prober pool once the pool has been created."""
        client = InMemoryDeviceClient()
        ops = [
            Operation("GSLBDataCenter", "dc", ChangeType.CREATE, {"enabled": True, "proberPool": "/Common/pool"}),
            Operation("GSLBServer", "srv", ChangeType.CREATE, {
                "dataCenter": "/Common/dc",
                "devices": [{"address": "10.0.0.1"}],
            }),
            Operation("GSLBProberPool", "pool", ChangeType.CREATE, {"members": [{"server": "/Common/srv"}]}),
        ]

        await GslbHandler().process(plan_slice("gslb", ops), client)

        assert mutations(client) == [
            ("POST", "/tm/gtm/datacenter"),
            ("POST", "/tm/gtm/server"),
            ("POST", "/tm/gtm/prober-pool"),
            ("PATCH", "/tm/gtm/datacenter/~Common~dc"),
        ]
        assert "proberPool" not in client.calls[0]["body"]
        assert client.find("/tm/gtm/datacenter", "dc")["proberPool"] == "/Common/pool"

    @pytest.mark.asyncio
    async def test_monitor_path_follows_type(self):
        """Monitors are created under their type's collection."""
        client = InMemoryDeviceClient()
        op = Operation("GSLBMonitor", "myMonitor", ChangeType.CREATE, {"monitorType": "https", "interval": 15})

        await GslbHandler().process(plan_slice("gslb", [op]), client)

        assert mutations(client) == [("POST", "/tm/gtm/monitor/https")]
        assert "monitorType" not in client.calls[0]["body"]
