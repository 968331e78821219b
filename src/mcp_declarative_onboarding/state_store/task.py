"""Task record of one reconciliation run."""
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ..config_engine.schema import TaskState

# Result codes reported on a task
CODE_OK = 200
CODE_RUNNING = 202
CODE_UNPROCESSABLE = 422
CODE_ERROR = 500

STATUS_OK = "OK"
STATUS_RUNNING = "RUNNING"
STATUS_ROLLING_BACK = "ROLLING_BACK"
STATUS_ERROR = "ERROR"

# Keys Task.from_dict understands; anything else in a legacy document is kept in Task.legacy
PERSISTED_KEYS = frozenset({
    "id", "state", "created", "lastUpdate", "result", "rebootRequired",
    "declaration", "internalDeclaration", "currentConfig", "originalConfig",
    "rollbackInfo", "traceCurrent", "traceDesired", "traceDiff", "traceResponse",
    "plan", "completedDomains", "legacy",
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return utcnow()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utcnow()


@dataclass
class TaskResult:
    """Outcome reported to the caller."""
    code: int = CODE_RUNNING
    status: str = STATUS_RUNNING
    message: str = "processing"
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "class": "Result",
            "code": self.code,
            "status": self.status,
            "message": self.message,
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "TaskResult":
        data = data or {}
        errors = data.get("errors") or []
        if isinstance(errors, str):
            errors = [errors]
        return cls(
            code=int(data.get("code", CODE_RUNNING) or CODE_RUNNING),
            status=data.get("status", STATUS_RUNNING),
            message=data.get("message", ""),
            errors=list(errors),
        )


@dataclass
class Task:
    """One reconciliation run and everything recorded about it."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: TaskState = TaskState.CREATED
    created: datetime = field(default_factory=utcnow)
    last_update: datetime = field(default_factory=utcnow)
    result: TaskResult = field(default_factory=TaskResult)
    reboot_required: bool = False
    declaration: dict[str, Any] = field(default_factory=dict)
    current_config: Optional[dict[str, Any]] = None
    original_config: Optional[dict[str, Any]] = None
    rollback_info: Optional[dict[str, Any]] = None
    trace_current: Optional[dict[str, Any]] = None
    trace_desired: Optional[dict[str, Any]] = None
    trace_diff: Optional[list[dict[str, Any]]] = None
    plan: list[dict[str, Any]] = field(default_factory=list)
    completed_domains: list[str] = field(default_factory=list)
    trace_response: bool = False
    legacy: dict[str, Any] = field(default_factory=dict)

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_update = now or utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Persisted form."""
        data = {
            "id": self.id,
            "state": self.state.value,
            "created": self.created.isoformat(),
            "lastUpdate": self.last_update.isoformat(),
            "result": self.result.to_dict(),
            "rebootRequired": self.reboot_required,
            "declaration": copy.deepcopy(self.declaration),
            "currentConfig": copy.deepcopy(self.current_config),
            "originalConfig": copy.deepcopy(self.original_config),
            "rollbackInfo": copy.deepcopy(self.rollback_info),
            "plan": copy.deepcopy(self.plan),
            "completedDomains": list(self.completed_domains),
        }
        if self.trace_response:
            data["traceResponse"] = True
        if self.legacy:
            data["legacy"] = copy.deepcopy(self.legacy)
        for key, value in (
            ("traceCurrent", self.trace_current),
            ("traceDesired", self.trace_desired),
            ("traceDiff", self.trace_diff),
        ):
            if value is not None:
                data[key] = copy.deepcopy(value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        try:
            state = TaskState(data.get("state", TaskState.CREATED.value))
        except ValueError:
            state = TaskState.FAILED
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            state=state,
            created=_parse_time(data.get("created", data.get("lastUpdate"))),
            last_update=_parse_time(data.get("lastUpdate")),
            result=TaskResult.from_dict(data.get("result")),
            reboot_required=bool(data.get("rebootRequired", False)),
            declaration=copy.deepcopy(data.get("declaration") or data.get("internalDeclaration") or {}),
            current_config=copy.deepcopy(data.get("currentConfig")),
            original_config=copy.deepcopy(data.get("originalConfig")),
            rollback_info=copy.deepcopy(data.get("rollbackInfo")),
            trace_current=copy.deepcopy(data.get("traceCurrent")),
            trace_desired=copy.deepcopy(data.get("traceDesired")),
            trace_diff=copy.deepcopy(data.get("traceDiff")),
            plan=copy.deepcopy(data.get("plan") or []),
            completed_domains=list(data.get("completedDomains") or []),
            trace_response=bool(data.get("traceResponse", False)),
            legacy=copy.deepcopy(data.get("legacy") or {}),
        )

    def to_response(self, include_trace: bool = False) -> dict[str, Any]:
        """Caller-facing view of the task.

        Traces are included when asked for or when the declaration set
        controls.traceResponse.
        """
        response = {
            "id": self.id,
            "state": self.state.value,
            "result": self.result.to_dict(),
            "rebootRequired": self.reboot_required,
            "lastUpdate": self.last_update.isoformat(),
            "completedDomains": list(self.completed_domains),
            "declaration": copy.deepcopy(self.declaration),
        }
        if include_trace or self.trace_response:
            for key, value in (
                ("traceCurrent", self.trace_current),
                ("traceDesired", self.trace_desired),
                ("traceDiff", self.trace_diff),
            ):
                if value is not None:
                    response[key] = copy.deepcopy(value)
        return response
