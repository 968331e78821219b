"""Tests for the configuration model and class table."""
import pytest
from mcp_declarative_onboarding.config_engine.schema import (
    ALLOWED_TRANSITIONS,
    ChangeType,
    DeviceConfig,
    Operation,
    TaskState,
)
from mcp_declarative_onboarding.config_engine.schema_map import (
    DOMAINS,
    NAMELESS_CLASSES,
    PRECEDENCE,
    SCHEMA_MAP,
    get_item,
    item_path,
    iter_references,
    map_references,
    normalize_ref,
    ref_name,
)


class TestDeviceConfig:
    """Tests for the canonical configuration value."""

    def test_from_dict_accepts_common_wrapper(self):
        """A {"Common": ...} document and a bare class map build the same value."""
        data = {"VLAN": {"internal": {"tag": 100}}}
        assert DeviceConfig.from_dict({"Common": data}) == DeviceConfig.from_dict(data)

    def test_accessors_return_copies(self):
        """Mutating a returned value does not change the config."""
        config = DeviceConfig({"VLAN": {"internal": {"tag": 100}}})
        props = config.get("VLAN", "internal")
        props["tag"] = 200
        assert config.get("VLAN", "internal") == {"tag": 100}

    def test_constructor_copies_input(self):
        """The config does not alias the dict it was built from."""
        data = {"DNS": {"nameServers": ["192.0.2.53"]}}
        config = DeviceConfig(data)
        data["DNS"]["nameServers"].append("192.0.2.54")
        assert config.get("DNS") == {"nameServers": ["192.0.2.53"]}

    def test_names_and_missing_class(self):
        """names() lists objects; unknown classes yield nothing."""
        config = DeviceConfig({"VLAN": {"a": {}, "b": {}}})
        assert config.names("VLAN") == ["a", "b"]
        assert config.names("Trunk") == []
        assert config.get("Trunk") is None
        assert config.get("VLAN", "missing") is None

    def test_with_class_returns_new_value(self):
        """with_class() leaves the original untouched."""
        config = DeviceConfig({"DNS": {"search": []}})
        updated = config.with_class("NTP", {"timezone": "UTC"})
        assert not config.has_class("NTP")
        assert updated.get("NTP") == {"timezone": "UTC"}
        assert not updated.with_class("NTP", None).has_class("NTP")

    def test_to_dict_wraps_in_common(self):
        """to_dict() produces the persisted {"Common": ...} form."""
        config = DeviceConfig({"DNS": {"search": []}})
        assert config.to_dict() == {"Common": {"DNS": {"search": []}}}

    def test_empty_config_is_falsy(self):
        """An empty config evaluates false."""
        assert not DeviceConfig()
        assert DeviceConfig({"DNS": {}})


class TestOperation:
    """Tests for planned operations."""

    def test_to_dict(self):
        """Operation serializes class, name, change and properties."""
        op = Operation("VLAN", "internal", ChangeType.CREATE, {"tag": 100})
        assert op.to_dict() == {
            "class": "VLAN",
            "name": "internal",
            "change": "create",
            "properties": {"tag": 100},
        }


class TestTaskState:
    """Tests for the task state machine table."""

    def test_terminal_states(self):
        """Only SUCCEEDED, ROLLED_BACK and FAILED are terminal."""
        terminal = {state for state in TaskState if state.terminal}
        assert terminal == {TaskState.SUCCEEDED, TaskState.ROLLED_BACK, TaskState.FAILED}

    def test_terminal_states_have_no_exits(self):
        """Nothing leaves a terminal state."""
        for state in TaskState:
            if state.terminal:
                assert ALLOWED_TRANSITIONS[state] == frozenset()

    def test_rollback_only_from_applying(self):
        """ROLLING_BACK is reachable from APPLYING only."""
        sources = {s for s, targets in ALLOWED_TRANSITIONS.items() if TaskState.ROLLING_BACK in targets}
        assert sources == {TaskState.APPLYING}

    def test_every_running_state_can_fail(self):
        """Every non-terminal state may move to FAILED."""
        for state in TaskState:
            if not state.terminal:
                assert TaskState.FAILED in ALLOWED_TRANSITIONS[state]


class TestSchemaMap:
    """Tests for the class table."""

    def test_vlan_precedes_route_domain(self):
        """VLANs are created before route domains that list them."""
        assert PRECEDENCE.index("VLAN") < PRECEDENCE.index("RouteDomain")

    def test_referenced_classes_precede_referrers(self):
        """Every reference target comes earlier in the creation order."""
        for schema_class in PRECEDENCE:
            item = SCHEMA_MAP[schema_class]
            for ref in item.references:
                if ref.target == schema_class:
                    continue
                if ref.target == "GSLBProberPool":
                    # Prober pools and their users reference each other
                    continue
                assert PRECEDENCE.index(ref.target) < PRECEDENCE.index(schema_class), (
                    f"{schema_class} references {ref.target}"
                )

    def test_every_class_has_a_domain(self):
        """Every class belongs to one of the known domains."""
        for item in SCHEMA_MAP.values():
            assert item.domain in DOMAINS

    def test_nameless_classes(self):
        """Singletons and device-level classes are nameless."""
        assert {"System", "DNS", "NTP", "Provision", "Authentication", "MirrorIp"} <= NAMELESS_CLASSES
        assert "VLAN" not in NAMELESS_CLASSES

    def test_get_item_unknown_class(self):
        """Unknown classes raise KeyError."""
        with pytest.raises(KeyError):
            get_item("Tenant")

    def test_item_path(self):
        """Partitioned items use ~Partition~name; others the bare name."""
        assert item_path(get_item("VLAN"), "internal") == "/tm/net/vlan/~Common~internal"
        assert item_path(get_item("User"), "jdoe") == "/tm/auth/user/jdoe"
        assert item_path(get_item("Route"), "r1", "LOCAL_ONLY") == "/tm/net/route/~LOCAL_ONLY~r1"

    def test_normalize_ref(self):
        """Bare names gain the /Common/ prefix; none and paths pass through."""
        assert normalize_ref("internal") == "/Common/internal"
        assert normalize_ref("/Common/internal") == "/Common/internal"
        assert normalize_ref("none") == "none"
        assert normalize_ref(0) == "/Common/0"
        assert ref_name("/Common/internal") == "internal"

    def test_iter_references_walks_lists(self):
        """List segments are expanded."""
        props = {
            "rules": [
                {"source": {"addressLists": ["a", "b"]}},
                {"source": {"addressLists": ["c"]}, "destination": {"portLists": ["p"]}},
            ]
        }
        assert list(iter_references(props, "rules[].source.addressLists[]")) == ["a", "b", "c"]
        assert list(iter_references(props, "rules[].destination.portLists[]")) == ["p"]

    def test_map_references_in_place(self):
        """map_references rewrites every value at the path."""
        props = {"vlans": ["a", "b"], "parent": "none"}
        map_references(props, "vlans[]", normalize_ref)
        map_references(props, "parent", normalize_ref)
        assert props == {"vlans": ["/Common/a", "/Common/b"], "parent": "none"}
