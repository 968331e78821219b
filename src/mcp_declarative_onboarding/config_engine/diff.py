"""Diff planner for calculating changes between desired and current config.

Computes the ordered list of operations needed to move the device from
its current configuration to the desired one. Creates and modifies follow
the class precedence table; deletes come last, in reverse precedence, so
referrers are removed before the objects they name.
"""
import json
import logging
from typing import Any, Optional

from ..utils.masking import SECRET_KEYS, strip_secrets
from .codecs import TableCodec, get_codec
from .errors import PlanningError
from .schema import ChangeType, ConfigItem, DeviceConfig, Operation, PropertyDescriptor
from .schema_map import PRECEDENCE, SCHEMA_MAP, iter_references, ref_name

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, (list, dict, str)) and value in ([], {}, "", "none")


def _normalize(value: Any) -> Any:
    """Structural form used for comparison: empties dropped, digit strings as ints."""
    if isinstance(value, dict):
        return {
            k: _normalize(v) for k, v in value.items()
            if k not in SECRET_KEYS and not _is_empty(v)
        }
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


def _multiset(values: list) -> list[str]:
    return sorted(json.dumps(v, sort_keys=True, default=str) for v in values)


def values_equal(prop: Optional[PropertyDescriptor], desired: Any, current: Any) -> bool:
    """Tolerant structural comparison of one property value."""
    if _is_empty(desired) and _is_empty(current):
        return True

    codec = get_codec(prop.codec) if prop else None
    if isinstance(codec, TableCodec) and isinstance(desired, dict) and isinstance(current, dict):
        return properties_equal(codec.properties, desired, current)

    desired = _normalize(strip_secrets(desired))
    current = _normalize(strip_secrets(current))
    if prop is not None and prop.unordered and isinstance(desired, list) and isinstance(current, list):
        return _multiset(desired) == _multiset(current)
    return desired == current


def properties_equal(properties: tuple, desired: dict[str, Any], current: dict[str, Any]) -> bool:
    by_name = {p.name: p for p in properties}
    return not changed_properties(by_name, desired, current)


def changed_properties(
    descriptors: dict[str, PropertyDescriptor],
    desired: dict[str, Any],
    current: dict[str, Any],
) -> dict[str, Any]:
    """Desired properties that differ from current, in declaration order.

    Desired None means unmanaged. Secrets never count as a change. A
    property the device does not report is equal when the desired value is
    empty or equals the declared default.
    """
    changed: dict[str, Any] = {}
    for key, value in desired.items():
        if value is None or key in SECRET_KEYS:
            continue
        prop = descriptors.get(key)
        if prop is not None and prop.secret:
            continue
        if key not in current:
            default = get_codec(prop.codec).canonical(prop.default) if prop and prop.default is not None else None
            if _is_empty(value) or (default is not None and values_equal(prop, value, default)):
                continue
            changed[key] = value
        elif not values_equal(prop, value, current[key]):
            changed[key] = value
    return changed


class DiffPlanner:
    """Calculate the operations that move current config to desired config."""

    def __init__(self, schema_map: Optional[dict[str, ConfigItem]] = None):
        self.schema_map = schema_map or SCHEMA_MAP
        self.precedence = [cls for cls in PRECEDENCE if cls in self.schema_map]

    def plan(
        self,
        desired: DeviceConfig,
        current: DeviceConfig,
        check_references: bool = True,
    ) -> list[Operation]:
        """
        Calculate the ordered operation list.

        Args:
            desired: Canonical desired configuration
            current: Canonical configuration read from the device
            check_references: Fail on desired references that do not resolve

        Returns:
            Creates and modifies in precedence order followed by deletes in
            reverse precedence order

        Raises:
            PlanningError: A desired reference does not resolve
        """
        if check_references:
            self.check_references(desired, current)

        operations: list[Operation] = []
        for schema_class in self.precedence:
            item = self.schema_map[schema_class]
            if item.nameless:
                op = self._diff_nameless(item, desired, current)
                if op:
                    operations.append(op)
            else:
                operations.extend(self._diff_named(item, desired, current))

        for schema_class in reversed(self.precedence):
            item = self.schema_map[schema_class]
            if not item.nameless:
                operations.extend(self._deletes(item, desired, current))

        logger.debug(f"Planned {len(operations)} operation(s)")
        return operations

    def _descriptors(self, item: ConfigItem) -> dict[str, PropertyDescriptor]:
        return {p.name: p for p in item.properties}

    def _diff_nameless(self, item: ConfigItem, desired: DeviceConfig, current: DeviceConfig) -> Optional[Operation]:
        wanted = desired.get(item.schema_class)
        if wanted is None:
            return None
        changed = changed_properties(self._descriptors(item), wanted, current.get(item.schema_class) or {})
        if not changed:
            return None
        return Operation(item.schema_class, None, ChangeType.MODIFY, changed)

    def _diff_named(self, item: ConfigItem, desired: DeviceConfig, current: DeviceConfig) -> list[Operation]:
        operations = []
        existing = current.get_class(item.schema_class) or {}
        descriptors = self._descriptors(item)
        for name, props in (desired.get_class(item.schema_class) or {}).items():
            if name not in existing:
                create = {k: v for k, v in props.items() if v is not None}
                operations.append(Operation(item.schema_class, name, ChangeType.CREATE, create))
                continue
            changed = changed_properties(descriptors, props, existing[name])
            if changed:
                operations.append(Operation(item.schema_class, name, ChangeType.MODIFY, changed))
        return operations

    def _deletes(self, item: ConfigItem, desired: DeviceConfig, current: DeviceConfig) -> list[Operation]:
        wanted = set(desired.names(item.schema_class))
        operations = []
        for name, props in (current.get_class(item.schema_class) or {}).items():
            if name in wanted or name in item.protected:
                continue
            operations.append(Operation(item.schema_class, name, ChangeType.DELETE, props))
        return operations

    def check_references(self, desired: DeviceConfig, current: DeviceConfig) -> None:
        """Every desired reference must name a desired object or a protected
        default present on the device."""
        unresolved = []
        for schema_class in self.precedence:
            item = self.schema_map[schema_class]
            if item.nameless or not item.references:
                continue
            for name, props in (desired.get_class(schema_class) or {}).items():
                for ref in item.references:
                    target = self.schema_map.get(ref.target)
                    for value in iter_references(props, ref.path):
                        if isinstance(value, bool) or value in ("", "none"):
                            continue
                        target_name = ref_name(value)
                        if target_name in desired.names(ref.target):
                            continue
                        if target and target_name in target.protected and target_name in current.names(ref.target):
                            continue
                        unresolved.append(f"{schema_class} {name}: {ref.path} -> {ref.target} {value}")
        if unresolved:
            raise PlanningError("Unresolved references: " + "; ".join(unresolved))


def summarize_plan(operations: list[Operation]) -> str:
    """
    Create a human-readable summary of a plan.

    Useful for dry-run output and logging.
    """
    if not operations:
        return "No changes needed - device configuration matches declaration"

    lines = [f"Changes to apply ({len(operations)} total):", ""]
    markers = {ChangeType.CREATE: "[+] Create", ChangeType.MODIFY: "[~] Modify", ChangeType.DELETE: "[-] Delete"}
    for op in operations:
        target = f"{op.schema_class} {op.name}" if op.name is not None else op.schema_class
        lines.append(f"  {markers[op.change_type]} {target}")
        if op.change_type != ChangeType.DELETE:
            for key, value in op.properties.items():
                if key in SECRET_KEYS:
                    continue
                lines.append(f"      {key}: {json.dumps(strip_secrets(value), default=str)}")
    return "\n".join(lines)
