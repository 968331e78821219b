"""Schema definitions for the reconciliation engine.

Defines the canonical configuration value, the static class descriptors
and the planning/apply result types.
"""
import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional


class ChangeType(str, Enum):
    """Kind of a planned mutation."""
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class TaskState(str, Enum):
    """Lifecycle states of a reconciliation task."""
    CREATED = "CREATED"
    VALIDATING = "VALIDATING"
    APPLYING = "APPLYING"
    ROLLING_BACK = "ROLLING_BACK"
    SUCCEEDED = "SUCCEEDED"
    ROLLED_BACK = "ROLLED_BACK"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.ROLLED_BACK, TaskState.FAILED})

ALLOWED_TRANSITIONS: dict[TaskState, frozenset] = {
    TaskState.CREATED: frozenset({TaskState.VALIDATING, TaskState.FAILED}),
    TaskState.VALIDATING: frozenset({TaskState.APPLYING, TaskState.FAILED}),
    TaskState.APPLYING: frozenset({TaskState.SUCCEEDED, TaskState.ROLLING_BACK, TaskState.FAILED}),
    TaskState.ROLLING_BACK: frozenset({TaskState.ROLLED_BACK, TaskState.FAILED}),
    TaskState.SUCCEEDED: frozenset(),
    TaskState.ROLLED_BACK: frozenset(),
    TaskState.FAILED: frozenset(),
}


class Layout(str, Enum):
    """How a configuration class is laid out on the device."""
    NAMED = "named"                  # collection of named items
    SINGLETON = "singleton"          # one object, possibly spread over several paths
    SELF_DEVICE = "self_device"      # properties of the local cm device object
    MODULE_LEVELS = "module_levels"  # one item per module carrying a level
    COMPOSITE = "composite"          # several device objects behind one class


# --- Static descriptors ---

@dataclass(frozen=True)
class PropertyDescriptor:
    """One declared property and how it maps onto the device."""
    name: str
    device_name: str
    default: Any = None
    codec: Optional[str] = None
    path: Optional[str] = None
    legacy_name: Optional[str] = None
    unordered: bool = False
    secret: bool = False
    create_only: bool = False
    replace_on_change: bool = False
    # Chooses the device sub-path instead of being sent in the body
    selector: bool = False


@dataclass(frozen=True)
class ReferenceSpec:
    """A property path that names another configuration object.

    Path segments ending in "[]" walk lists, e.g. "entries[].match.asPath".
    """
    path: str
    target: str


@dataclass(frozen=True)
class ConfigItem:
    """Static descriptor of one configuration class."""
    schema_class: str
    domain: str
    path: str
    properties: tuple = ()
    layout: Layout = Layout.NAMED
    protected: frozenset = frozenset()
    references: tuple = ()
    partitioned: bool = True
    variants: tuple = ()

    @property
    def nameless(self) -> bool:
        return self.layout != Layout.NAMED

    def get_property(self, name: str) -> Optional[PropertyDescriptor]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def property_names(self) -> list[str]:
        return [p.name for p in self.properties]


# --- Canonical configuration value ---

class DeviceConfig:
    """Immutable canonical configuration keyed by schema class.

    Named classes map to {name: properties}; nameless classes map directly
    to their properties. Accessors hand out copies so no caller can alias
    the internal state.
    """

    def __init__(self, data: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(data) if data else {}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "DeviceConfig":
        """Build from {"Common": {...}} or a bare class map."""
        if not data:
            return cls()
        if "Common" in data and isinstance(data["Common"], dict):
            return cls(data["Common"])
        return cls(data)

    def classes(self) -> list[str]:
        return list(self._data.keys())

    def has_class(self, schema_class: str) -> bool:
        return schema_class in self._data

    def get_class(self, schema_class: str) -> Optional[dict[str, Any]]:
        value = self._data.get(schema_class)
        return copy.deepcopy(value) if value is not None else None

    def names(self, schema_class: str) -> list[str]:
        return list((self._data.get(schema_class) or {}).keys())

    def get(self, schema_class: str, name: Optional[str] = None) -> Optional[dict[str, Any]]:
        """Properties of one object, or of the nameless class when name is None."""
        value = self._data.get(schema_class)
        if value is None:
            return None
        if name is not None:
            value = value.get(name)
        return copy.deepcopy(value) if value is not None else None

    def items(self) -> Iterator[tuple[str, Any]]:
        for schema_class, value in self._data.items():
            yield schema_class, copy.deepcopy(value)

    def with_class(self, schema_class: str, value: Any) -> "DeviceConfig":
        data = copy.deepcopy(self._data)
        if value is None:
            data.pop(schema_class, None)
        else:
            data[schema_class] = copy.deepcopy(value)
        return DeviceConfig(data)

    def to_dict(self) -> dict[str, Any]:
        return {"Common": copy.deepcopy(self._data)}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeviceConfig):
            return NotImplemented
        return self._data == other._data

    def __bool__(self) -> bool:
        return bool(self._data)

    def __repr__(self) -> str:
        return f"DeviceConfig({json.dumps(self._data, sort_keys=True, default=str)[:200]})"


# --- Planning ---

@dataclass
class Operation:
    """One planned mutation."""
    schema_class: str
    name: Optional[str]
    change_type: ChangeType
    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "class": self.schema_class,
            "name": self.name,
            "change": self.change_type.value,
            "properties": copy.deepcopy(self.properties),
        }


@dataclass
class PlanSlice:
    """Contiguous run of operations for one domain plus the configs they came from."""
    domain: str
    operations: list[Operation]
    desired: DeviceConfig
    current: DeviceConfig


# --- Validation Results ---

@dataclass
class ValidationResult:
    """Result of declaration validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# --- Apply Results ---

@dataclass
class HandlerOutcome:
    """What a domain handler reports after processing its slice."""
    domain: str
    operations: int = 0
    reboot_required: bool = False


@dataclass
class ApplyOutcome:
    """Aggregate result of applying a plan."""
    mutations: int = 0
    reboot_required: bool = False
    domains: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mutations": self.mutations,
            "reboot_required": self.reboot_required,
            "domains": list(self.domains),
        }


@dataclass
class RollbackOutcome:
    """Result of restoring the pre-apply snapshot."""
    operations: int = 0
    mutations: int = 0

    def to_dict(self) -> dict:
        return {"operations": self.operations, "mutations": self.mutations}
