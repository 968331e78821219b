"""Config Engine - declarative onboarding reconciliation.

The Config Engine drives a device toward a declaration:
- Send desired state, not individual REST calls
- Validation and reference checks before touching the device
- Dependency-ordered plans applied per domain
- Rollback to the pre-apply snapshot on failure

Usage:
    from mcp_declarative_onboarding.config_engine import ReconciliationCoordinator
    from mcp_declarative_onboarding.state_store import StateStore

    coordinator = ReconciliationCoordinator(StateStore(), client)
    task_id = await coordinator.submit({
        "schemaVersion": "1.23.0",
        "class": "Device",
        "Common": {
            "class": "Tenant",
            "internal": {"class": "VLAN", "tag": 100, "interfaces": [{"name": "1.1"}]},
        },
    })
"""

from .engine import ReconciliationCoordinator
from .schema import (
    ChangeType,
    TaskState,
    Layout,
    PropertyDescriptor,
    ReferenceSpec,
    ConfigItem,
    DeviceConfig,
    Operation,
    PlanSlice,
    ValidationResult,
    HandlerOutcome,
    ApplyOutcome,
    RollbackOutcome,
)
from .errors import (
    OnboardingError,
    ValidationError,
    PlanningError,
    ApplyError,
    RollbackError,
    PersistenceError,
    TaskNotFoundError,
    InvalidTransitionError,
)
from .translator import ConfigTranslator
from .validator import DeclarationValidator, EnvelopeValidator
from .diff import DiffPlanner, summarize_plan
from .executor import PlanExecutor
from .rollback import RollbackManager

__all__ = [
    # Main engine
    "ReconciliationCoordinator",
    # Schema classes
    "ChangeType",
    "TaskState",
    "Layout",
    "PropertyDescriptor",
    "ReferenceSpec",
    "ConfigItem",
    "DeviceConfig",
    "Operation",
    "PlanSlice",
    "ValidationResult",
    "HandlerOutcome",
    "ApplyOutcome",
    "RollbackOutcome",
    # Errors
    "OnboardingError",
    "ValidationError",
    "PlanningError",
    "ApplyError",
    "RollbackError",
    "PersistenceError",
    "TaskNotFoundError",
    "InvalidTransitionError",
    # Components (for advanced use)
    "ConfigTranslator",
    "DeclarationValidator",
    "EnvelopeValidator",
    "DiffPlanner",
    "summarize_plan",
    "PlanExecutor",
    "RollbackManager",
]
