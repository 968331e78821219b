"""End-to-end tests for the ReconciliationCoordinator against the in-memory device."""
import asyncio

import pytest
from mcp_declarative_onboarding.config_engine.engine import ReconciliationCoordinator
from mcp_declarative_onboarding.config_engine.errors import OnboardingError, PersistenceError
from mcp_declarative_onboarding.config_engine.schema import TaskState
from mcp_declarative_onboarding.devices.memory import InMemoryDeviceClient
from mcp_declarative_onboarding.state_store.persistence import MemoryPersistence
from mcp_declarative_onboarding.state_store.store import StateStore
from mcp_declarative_onboarding.utils.masking import MASK

MACHINE_ID = "f5a1b2c3-0000-4000-8000-000000000001"


def declaration(**common):
    return {
        "schemaVersion": "1.23.0",
        "class": "Device",
        "Common": {"class": "Tenant", **common},
    }


NETWORK = {
    "hostname": {"class": "System", "hostname": "bigip1.example.com"},
    "dns": {"class": "DNS", "nameServers": ["192.0.2.10", "192.0.2.11"], "search": ["example.com"]},
    "ntp": {"class": "NTP", "servers": ["0.pool.ntp.org"], "timezone": "UTC"},
    "myVlan": {"class": "VLAN", "tag": 4093, "interfaces": [{"name": "1.1", "tagged": True}]},
    "myRouteDomain": {"class": "RouteDomain", "id": 100, "vlans": ["myVlan"]},
    "mySelfIp": {"class": "SelfIp", "address": "10.0.0.10/24", "vlan": "myVlan"},
    "myRoute": {"class": "Route", "gw": "10.0.0.1", "network": "default"},
}


def radius(*roles):
    servers = {
        "primary": {"server": "192.0.2.10", "secret": "primarySecret"},
        "secondary": {"server": "192.0.2.11", "secret": "secondarySecret"},
    }
    return {
        "class": "Authentication",
        "enabledSourceType": "radius",
        "radius": {"serviceType": "administrative", "servers": {role: servers[role] for role in roles}},
    }


class TestReconcile:
    """Tests for successful runs."""

    @pytest.fixture
    def client(self):
        return InMemoryDeviceClient("bigip1")

    @pytest.fixture
    def coordinator(self, client):
        return ReconciliationCoordinator(StateStore(MemoryPersistence()), client)

    @pytest.mark.asyncio
    async def test_apply_network_declaration(self, coordinator, client):
        """A valid declaration is applied and the task succeeds."""
        task_id = await coordinator.submit(declaration(**NETWORK))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.SUCCEEDED
        assert task.result.code == 200
        assert task.result.message == "success"
        assert task.completed_domains == ["system", "network"]
        assert client.singleton("/tm/sys/global-settings")["hostname"] == "bigip1.example.com"
        assert client.find("/tm/net/route-domain", "myRouteDomain")["vlans"] == ["/Common/myVlan"]
        assert client.find("/tm/net/self", "mySelfIp")["trafficGroup"] == "/Common/traffic-group-local-only"

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, coordinator, client):
        """Re-submitting the same declaration plans nothing."""
        await coordinator.submit(declaration(**NETWORK))
        client.reset_calls()

        task_id = await coordinator.submit(declaration(**NETWORK))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.SUCCEEDED
        assert task.plan == []
        assert client.mutations == []

    @pytest.mark.asyncio
    async def test_removed_objects_deleted_in_reverse_order(self, coordinator, client):
        """Objects dropped from the declaration are deleted, referrers first."""
        common = {k: v for k, v in NETWORK.items() if k in ("myVlan", "myRouteDomain")}
        await coordinator.submit(declaration(**common))
        client.reset_calls()

        task_id = await coordinator.submit(declaration())

        assert coordinator.get_task(task_id).state == TaskState.SUCCEEDED
        assert [(c["method"], c["path"]) for c in client.mutations] == [
            ("DELETE", "/tm/net/route-domain/~Common~myRouteDomain"),
            ("DELETE", "/tm/net/vlan/~Common~myVlan"),
        ]

    @pytest.mark.asyncio
    async def test_original_config_captured_once(self, coordinator):
        """The first run records the factory configuration under the machine id."""
        await coordinator.submit(declaration(**NETWORK))
        await coordinator.submit(declaration())

        original = coordinator.store.get_original_config(MACHINE_ID)
        assert original["Common"]["DNS"] == {"nameServers": ["192.0.2.53"], "search": ["localhost"]}
        assert "VLAN" not in original["Common"]

    @pytest.mark.asyncio
    async def test_radius_secondary_removal(self, coordinator, client):
        """Dropping the secondary RADIUS server updates the aggregate before deleting it."""
        await coordinator.submit(declaration(auth=radius("primary", "secondary")))
        client.reset_calls()

        task_id = await coordinator.submit(declaration(auth=radius("primary")))

        assert coordinator.get_task(task_id).state == TaskState.SUCCEEDED
        calls = [(c["method"], c["path"]) for c in client.mutations]
        assert calls.index(("PATCH", "/tm/auth/radius/~Common~system-auth")) < calls.index(
            ("DELETE", "/tm/auth/radius-server/~Common~system_auth_name2")
        )
        stored = coordinator.store.get_declaration(task_id)
        assert stored["Common"]["auth"]["radius"]["servers"]["primary"]["secret"] == MASK

    @pytest.mark.asyncio
    async def test_provisioning_requires_reboot(self, coordinator, client):
        """Provisioning changes flag rebootRequired."""
        task_id = await coordinator.submit(declaration(
            provision={"class": "Provision", "ltm": "nominal", "gtm": "nominal"},
        ))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.SUCCEEDED
        assert task.reboot_required is True
        assert client.find("/tm/sys/provision", "gtm")["level"] == "nominal"

    @pytest.mark.asyncio
    async def test_dry_run(self, coordinator, client):
        """dryRun plans without touching the device."""
        decl = declaration(**NETWORK)
        decl["controls"] = {"dryRun": True}

        task_id = await coordinator.submit(decl)

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.SUCCEEDED
        assert task.result.message.startswith("dry run:")
        assert len(task.plan) > 0
        assert client.mutations == []

    @pytest.mark.asyncio
    async def test_trace_recorded(self, coordinator):
        """trace stores current, desired and diff on the task."""
        decl = declaration(myVlan=NETWORK["myVlan"])
        decl["controls"] = {"trace": True}

        task_id = await coordinator.submit(decl)

        response = coordinator.get_task(task_id).to_response(include_trace=True)
        assert response["traceDiff"][0]["class"] == "VLAN"
        assert "myVlan" in response["traceDesired"]["Common"]["VLAN"]
        assert "VLAN" not in response["traceCurrent"]["Common"]

    @pytest.mark.asyncio
    async def test_async_submit(self, coordinator):
        """async runs in the background and can be awaited."""
        decl = declaration(myVlan=NETWORK["myVlan"])
        decl["async"] = True

        task_id = await coordinator.submit(decl)
        task = await coordinator.wait(task_id)

        assert task.state == TaskState.SUCCEEDED
        assert coordinator.list_task_ids() == [task_id]

    @pytest.mark.asyncio
    async def test_background_run_forgotten_when_done(self, coordinator):
        """Finished background runs are dropped without anyone waiting on them."""
        decl = declaration(myVlan=NETWORK["myVlan"])
        decl["async"] = True

        task_id = await coordinator.submit(decl)
        for _ in range(1000):
            if coordinator.get_task(task_id).state.terminal and task_id not in coordinator._background:
                break
            await asyncio.sleep(0)

        assert coordinator.get_task(task_id).state == TaskState.SUCCEEDED
        assert coordinator._background == {}

    @pytest.mark.asyncio
    async def test_trace_response_returns_traces(self, coordinator):
        """controls.traceResponse records traces and includes them in every response."""
        decl = declaration(myVlan=NETWORK["myVlan"])
        decl["controls"] = {"traceResponse": True}

        task_id = await coordinator.submit(decl)

        response = coordinator.get_task(task_id).to_response()
        assert response["traceDiff"][0]["class"] == "VLAN"
        assert "myVlan" in response["traceDesired"]["Common"]["VLAN"]

    @pytest.mark.asyncio
    async def test_cancelled_run_stays_in_progress(self):
        """Cancelling a background run mid-apply leaves the task non-terminal."""
        client = InMemoryDeviceClient("bigip1", latency=0.01)
        coordinator = ReconciliationCoordinator(StateStore(MemoryPersistence()), client)
        decl = declaration(**NETWORK)
        decl["async"] = True

        task_id = await coordinator.submit(decl)
        background = coordinator._background[task_id]
        for _ in range(500):
            if coordinator.get_task(task_id).state == TaskState.APPLYING and client.mutations:
                break
            await asyncio.sleep(0.005)
        background.cancel()

        with pytest.raises(asyncio.CancelledError):
            await background
        await asyncio.sleep(0)

        state = coordinator.get_task(task_id).state
        assert state == TaskState.APPLYING
        assert not state.terminal
        assert task_id not in coordinator._background

    @pytest.mark.asyncio
    async def test_inspect(self, coordinator):
        """inspect() renders the live device as a declaration."""
        await coordinator.submit(declaration(myVlan=NETWORK["myVlan"]))

        rendered = await coordinator.inspect()

        assert rendered["class"] == "Device"
        assert rendered["Common"]["myVlan"]["tag"] == 4093
        assert rendered["Common"]["currentDNS"]["nameServers"] == ["192.0.2.53"]

    @pytest.mark.asyncio
    async def test_restore_original(self, coordinator, client):
        """Restoring the original configuration removes what onboarding added."""
        await coordinator.submit(declaration(myVlan=NETWORK["myVlan"], dns=NETWORK["dns"]))

        task_id = await coordinator.restore_original()

        assert coordinator.get_task(task_id).state == TaskState.SUCCEEDED
        assert client.find("/tm/net/vlan", "myVlan") is None
        assert client.singleton("/tm/sys/dns")["nameServers"] == ["192.0.2.53"]

    @pytest.mark.asyncio
    async def test_restore_without_original(self, coordinator):
        """Restoring before any onboarding fails."""
        with pytest.raises(OnboardingError):
            await coordinator.restore_original()

    @pytest.mark.asyncio
    async def test_machine_id_falls_back_to_device_id(self, coordinator, client):
        """Devices without device info are keyed by their inventory id."""
        client.fail_on("GET", "/shared/identified-devices/config/device-info", status=404)

        assert await coordinator.machine_id() == "bigip1"


class TestFailures:
    """Tests for failed runs and rollback."""

    @pytest.fixture
    def client(self):
        return InMemoryDeviceClient("bigip1")

    @pytest.fixture
    def coordinator(self, client):
        return ReconciliationCoordinator(StateStore(MemoryPersistence()), client)

    @pytest.mark.asyncio
    async def test_invalid_declaration(self, coordinator, client):
        """Invalid declarations fail with 422 before any device call."""
        task_id = await coordinator.submit(declaration(myVlan={"class": "VLAN", "tag": 5000}))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.FAILED
        assert task.result.code == 422
        assert task.result.message == "bad declaration"
        assert "Common.myVlan: tag must be an integer between 1 and 4094" in task.result.errors
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_non_object_declaration(self, coordinator):
        """Garbage input becomes a failed task, not an exception."""
        task_id = await coordinator.submit("not a declaration")

        assert coordinator.get_task(task_id).result.code == 422

    @pytest.mark.asyncio
    async def test_apply_failure_rolls_back(self, coordinator, client):
        """A failure after mutations restores the snapshot."""
        common = {k: NETWORK[k] for k in ("myVlan", "myRouteDomain", "mySelfIp")}
        client.fail_on("POST", "/tm/net/self")

        task_id = await coordinator.submit(declaration(**common))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.ROLLED_BACK
        assert task.result.code == 422
        assert task.result.message == "invalid config - rolled back"
        assert len(task.result.errors) == 1
        assert client.find("/tm/net/vlan", "myVlan") is None
        assert client.find("/tm/net/route-domain", "myRouteDomain") is None

    @pytest.mark.asyncio
    async def test_rollback_failure(self, coordinator, client):
        """A failed rollback leaves the task FAILED with both errors."""
        common = {k: NETWORK[k] for k in ("myVlan", "myRouteDomain", "mySelfIp")}
        client.fail_on("POST", "/tm/net/self")
        client.fail_on("DELETE", "/tm/net/vlan/*")

        task_id = await coordinator.submit(declaration(**common))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.FAILED
        assert task.result.code == 500
        assert task.result.message == "rollback failed"
        assert len(task.result.errors) == 2

    @pytest.mark.asyncio
    async def test_failure_without_mutations(self, coordinator, client):
        """Nothing to roll back when the first mutation fails."""
        client.fail_on("POST", "/tm/net/vlan")

        task_id = await coordinator.submit(declaration(myVlan=NETWORK["myVlan"]))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.FAILED
        assert task.result.code == 422
        assert task.result.message == "apply failed, no changes made"

    @pytest.mark.asyncio
    async def test_device_read_failure(self, coordinator, client):
        """A device that cannot be read fails the task with 500."""
        client.fail_on("GET", "/tm/net/vlan", status=500)

        task_id = await coordinator.submit(declaration(myVlan=NETWORK["myVlan"]))

        task = coordinator.get_task(task_id)
        assert task.state == TaskState.FAILED
        assert task.result.code == 500
        assert client.mutations == []

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(self, client):
        """State that cannot be saved is reported to the caller."""
        persistence = MemoryPersistence()
        coordinator = ReconciliationCoordinator(StateStore(persistence), client)
        original_save = persistence.save

        def save_once(data):
            original_save(data)
            persistence.fail_saves = True

        persistence.save = save_once

        with pytest.raises(PersistenceError):
            await coordinator.submit(declaration())
