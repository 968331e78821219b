"""Pre-flight validation for declarations.

Catches malformed and inconsistent declarations before any device
communication. The envelope is checked with a pydantic model; the tenant
tree is checked against the class table, including reference integrity.
"""
import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from ..utils.versions import SUPPORTED_SCHEMA_VERSIONS
from .schema import ConfigItem, Layout, ValidationResult
from .schema_map import (
    GSLB_MONITOR_TYPES,
    SCHEMA_MAP,
    iter_references,
    normalize_ref,
    ref_name,
)
from .translator import SELF_IP_POINTER

# Keys accepted on every class besides its declared properties
META_KEYS = {"class", "label"}

NAME_PATTERN = re.compile(r"^[^/\s]+$")

PROVISION_LEVELS = {"none", "minimum", "nominal", "dedicated"}

AUTH_SOURCE_TYPES = {"local", "radius", "tacacs", "ldap", "activeDirectory"}

REQUIRED_PROPERTIES = {
    "VLAN": ("tag",),
    "RouteDomain": ("id",),
    "SelfIp": ("address", "vlan"),
    "ManagementRoute": ("gw",),
    "RoutingBGP": ("localAS",),
    "RemoteAuthRole": ("lineOrder", "role"),
    "GSLBMonitor": ("monitorType",),
    "GSLBServer": ("dataCenter", "devices"),
}

# (min, max) inclusive
RANGES = {
    ("VLAN", "tag"): (1, 4094),
    ("VLAN", "mtu"): (576, 9198),
    ("RouteDomain", "id"): (0, 65534),
    ("RouteDomain", "connectionLimit"): (0, 4294967295),
    ("RoutingBGP", "localAS"): (1, 4294967295),
    ("RoutingBGP", "holdTime"): (0, 65535),
    ("RoutingBGP", "keepAlive"): (1, 65535),
    ("RemoteAuthRole", "lineOrder"): (1, 4294967295),
    ("System", "consoleInactivityTimeout"): (0, 2147483647),
    ("GSLBMonitor", "interval"): (1, 86399),
}


class Controls(BaseModel):
    """Per-request processing controls."""
    model_config = ConfigDict(extra="forbid")

    dryRun: bool = False
    trace: bool = False
    traceResponse: bool = False


class DeclarationEnvelope(BaseModel):
    """Top-level shape of a declaration."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    schemaVersion: str
    class_: Literal["Device"] = Field(alias="class")
    async_: bool = Field(default=False, alias="async")
    label: Optional[str] = None
    Common: dict[str, Any]
    Credentials: Optional[list[dict[str, Any]]] = None
    controls: Controls = Field(default_factory=Controls)
    # Populated by the engine; ignored on input
    result: Optional[dict[str, Any]] = None

    @field_validator("schemaVersion")
    @classmethod
    def _supported_version(cls, value: str) -> str:
        if value not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(f"unsupported schemaVersion {value}")
        return value

    @field_validator("Common")
    @classmethod
    def _tenant(cls, value: dict[str, Any]) -> dict[str, Any]:
        if value.get("class") != "Tenant":
            raise ValueError('Common must have class "Tenant"')
        return value


class EnvelopeValidator:
    """Schema validator for the declaration envelope."""

    def validate(self, declaration: Any) -> ValidationResult:
        if not isinstance(declaration, dict):
            return ValidationResult(valid=False, errors=["declaration must be an object"])
        try:
            DeclarationEnvelope.model_validate(declaration)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'declaration'}: {err['msg']}"
                for err in e.errors()
            ]
            return ValidationResult(valid=False, errors=errors)
        return ValidationResult(valid=True)


def parse_controls(declaration: dict[str, Any]) -> Controls:
    """Controls of an already validated declaration."""
    return Controls.model_validate(declaration.get("controls") or {})


class DeclarationValidator:
    """Validate a declaration before any device communication."""

    def __init__(self, schema_validator: Optional[Any] = None):
        """
        Initialize validator.

        Args:
            schema_validator: Envelope validator with validate(declaration) -> ValidationResult.
                Defaults to the pydantic EnvelopeValidator.
        """
        self.schema_validator = schema_validator or EnvelopeValidator()

    def validate(self, declaration: Any) -> ValidationResult:
        """
        Validate a declaration.

        Performs pre-flight checks:
        - Envelope shape and schema version
        - Known classes and property names
        - One entry per nameless class
        - Required properties and value ranges
        - Cross-reference resolution

        Args:
            declaration: The raw declaration

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        envelope = self.schema_validator.validate(declaration)
        if not envelope.valid:
            return envelope

        errors: list[str] = list(envelope.errors)
        warnings: list[str] = list(envelope.warnings)

        common = declaration["Common"]
        entries = self._entries(common, errors)

        self._check_nameless(entries, errors)
        for name, item, entry in entries:
            self._check_properties(name, item, entry, errors)
            self._check_values(name, item, entry, errors)
        self._check_authentication(entries, errors)
        self._check_references(entries, errors)
        self._check_self_ip_pointers(entries, errors)

        if any(item.schema_class == "Provision" for _, item, _ in entries):
            warnings.append("Provisioning changes may require a reboot")

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)

    def _entries(self, common: dict[str, Any], errors: list[str]) -> list[tuple[str, ConfigItem, dict]]:
        """Declared (name, item, entry) triples of known classes."""
        entries = []
        for name, entry in common.items():
            if name == "class":
                continue
            if not isinstance(entry, dict):
                errors.append(f"Common.{name}: must be an object")
                continue
            item = SCHEMA_MAP.get(entry.get("class"))
            if item is None:
                errors.append(f"Common.{name}: unknown class {entry.get('class')!r}")
                continue
            if not item.nameless and not NAME_PATTERN.match(name):
                errors.append(f"Common.{name}: invalid object name")
                continue
            entries.append((name, item, entry))
        return entries

    def _check_nameless(self, entries: list, errors: list[str]) -> None:
        seen: dict[str, str] = {}
        for name, item, _ in entries:
            if not item.nameless:
                continue
            if item.schema_class in seen:
                errors.append(
                    f"Common.{name}: only one {item.schema_class} may be declared "
                    f"(already declared as {seen[item.schema_class]})"
                )
            else:
                seen[item.schema_class] = name

    def _check_properties(self, name: str, item: ConfigItem, entry: dict, errors: list[str]) -> None:
        known = set(item.property_names()) | META_KEYS
        for key in entry:
            if key not in known:
                errors.append(f"Common.{name}: unknown property {key!r} for class {item.schema_class}")
        for key in REQUIRED_PROPERTIES.get(item.schema_class, ()):
            if entry.get(key) in (None, "", []):
                errors.append(f"Common.{name}: {item.schema_class} requires property {key!r}")

    def _check_values(self, name: str, item: ConfigItem, entry: dict, errors: list[str]) -> None:
        for key, value in entry.items():
            bounds = RANGES.get((item.schema_class, key))
            if bounds is None or value is None:
                continue
            if not isinstance(value, int) or isinstance(value, bool) or not bounds[0] <= value <= bounds[1]:
                errors.append(
                    f"Common.{name}: {key} must be an integer between {bounds[0]} and {bounds[1]}"
                )

        if item.layout == Layout.MODULE_LEVELS:
            for module, level in entry.items():
                if module not in META_KEYS and level not in PROVISION_LEVELS:
                    errors.append(f"Common.{name}: invalid provisioning level {level!r} for {module}")

        if item.schema_class == "GSLBMonitor" and entry.get("monitorType") not in (None, *GSLB_MONITOR_TYPES):
            errors.append(f"Common.{name}: unsupported monitorType {entry['monitorType']!r}")

        if item.schema_class == "Route" and not entry.get("gw") and not entry.get("target"):
            errors.append(f"Common.{name}: Route requires either gw or target")

    def _check_authentication(self, entries: list, errors: list[str]) -> None:
        for name, item, entry in entries:
            if item.schema_class != "Authentication":
                continue
            source = entry.get("enabledSourceType", "local")
            if source not in AUTH_SOURCE_TYPES:
                errors.append(f"Common.{name}: unsupported enabledSourceType {source!r}")
            elif source == "activeDirectory" and "ldap" not in entry:
                errors.append(f"Common.{name}: enabledSourceType activeDirectory requires ldap")
            elif source not in ("local", "activeDirectory") and source not in entry:
                errors.append(f"Common.{name}: enabledSourceType {source} requires {source}")

            radius = entry.get("radius")
            if radius is not None:
                primary = (radius.get("servers") or {}).get("primary")
                if not primary or not primary.get("server"):
                    errors.append(f"Common.{name}: radius requires servers.primary.server")

            tacacs = entry.get("tacacs")
            if tacacs is not None and not tacacs.get("servers"):
                errors.append(f"Common.{name}: tacacs requires servers")

            ldap = entry.get("ldap")
            if ldap is not None and not ldap.get("servers"):
                errors.append(f"Common.{name}: ldap requires servers")

    def _check_references(self, entries: list, errors: list[str]) -> None:
        declared: dict[str, set[str]] = {}
        for name, item, _ in entries:
            declared.setdefault(item.schema_class, set()).add(name)

        for name, item, entry in entries:
            for ref in item.references:
                target = SCHEMA_MAP[ref.target]
                for value in iter_references(entry, ref.path):
                    if isinstance(value, bool) or value in ("", "none"):
                        continue
                    target_name = ref_name(normalize_ref(value))
                    if target_name in declared.get(ref.target, set()) or target_name in target.protected:
                        continue
                    errors.append(
                        f"Common.{name}: {ref.path} references {ref.target} "
                        f"{normalize_ref(value)} which is not declared"
                    )

    def _check_self_ip_pointers(self, entries: list, errors: list[str]) -> None:
        self_ips = {name for name, item, _ in entries if item.schema_class == "SelfIp"}
        for name, item, entry in entries:
            if item.layout != Layout.SELF_DEVICE:
                continue
            values = [v for k, v in entry.items() if k != "addressPorts"]
            values += [p.get("address") for p in entry.get("addressPorts") or [] if isinstance(p, dict)]
            for value in values:
                if not isinstance(value, str):
                    continue
                match = SELF_IP_POINTER.match(value)
                if match and match.group(1) not in self_ips:
                    errors.append(f"Common.{name}: {value} does not name a declared SelfIp")
