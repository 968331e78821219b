"""State store for reconciliation tasks and original device configuration.

Handles:
- Task records and their state machine
- Retention purge of expired tasks
- Original configuration per device, with lazy identifier migration
- Upgrade of legacy single-task state documents
"""
import copy
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ..config_engine.errors import InvalidTransitionError, TaskNotFoundError
from ..config_engine.schema import ALLOWED_TRANSITIONS, TaskState
from ..config_engine.translator import ConfigTranslator
from ..utils.masking import mask_secrets
from ..utils.versions import ENGINE_VERSION, compare_versions
from .persistence import MemoryPersistence, Persistence
from .task import CODE_OK, PERSISTED_KEYS, Task, TaskResult, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7

# Version assumed for original configs stored without one
UNVERSIONED = "0.0.0-0"


class StateStore:
    """
    Persistent record of tasks and original device configuration.

    Every write stamps the task's lastUpdate and persists the whole state
    document before returning. Writers to one task serialize on that task's
    lock; reads and writes of other tasks do not wait on it. Saves of the
    whole document serialize on the store lock.
    """

    def __init__(
        self,
        persistence: Optional[Persistence] = None,
        translator: Optional[ConfigTranslator] = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the store and load any persisted state.

        Args:
            persistence: Backend for the state document. Defaults to in-memory.
            translator: Used to migrate stored original configs
            retention_days: Tasks not updated for this long are purged on add_task
            clock: Returns the current UTC time (tests inject a fixed clock)
        """
        self.persistence = persistence or MemoryPersistence()
        self.translator = translator or ConfigTranslator()
        self.retention = timedelta(days=retention_days)
        self.clock = clock or utcnow

        self._lock = threading.RLock()
        self._task_locks: dict[str, threading.RLock] = {}
        self._tasks: dict[str, Task] = {}
        self._original_configs: dict[str, dict[str, Any]] = {}
        self._most_recent: Optional[str] = None

        self._load()

    # --- loading ---

    def _load(self) -> None:
        data = self.persistence.load()
        if not data:
            return
        if "tasks" not in data:
            data = self._upgrade_legacy(data)

        for task_id, task_data in (data.get("tasks") or {}).items():
            task = Task.from_dict({**task_data, "id": task_id})
            self._tasks[task_id] = task
            self._task_locks[task_id] = threading.RLock()
        self._original_configs = copy.deepcopy(data.get("originalConfig") or {})
        self._most_recent = data.get("mostRecentTask")
        logger.debug(f"Loaded {len(self._tasks)} task(s) from persisted state")

    def _upgrade_legacy(self, data: dict[str, Any]) -> dict[str, Any]:
        """Wrap a pre-task state document into one synthesized task."""
        task = Task.from_dict(data)
        task.legacy = {k: copy.deepcopy(v) for k, v in data.items() if k not in PERSISTED_KEYS}
        if task.state == TaskState.CREATED:
            task.state = TaskState.SUCCEEDED if task.result.code == CODE_OK else TaskState.FAILED
        task.touch(self.clock())
        logger.info(f"Upgraded legacy state document into task {task.id}")
        return {
            "tasks": {task.id: task.to_dict()},
            "originalConfig": data.get("originalConfig") or {},
            "mostRecentTask": task.id,
        }

    def _document(self) -> dict[str, Any]:
        with self._lock:
            return {
                "tasks": {task_id: task.to_dict() for task_id, task in self._tasks.items()},
                "originalConfig": copy.deepcopy(self._original_configs),
                "mostRecentTask": self._most_recent,
            }

    def _persist(self) -> None:
        # Documents reach persistence in the order they were built
        with self._lock:
            self.persistence.save(self._document())

    # --- task access ---

    def _task(self, task_id: str) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _task_lock(self, task_id: str) -> threading.RLock:
        with self._lock:
            lock = self._task_locks.get(task_id)
        if lock is None:
            raise TaskNotFoundError(task_id)
        return lock

    def _write(self, task_id: str, change: Callable[[Task], None]) -> Task:
        with self._task_lock(task_id):
            task = self._task(task_id)
            change(task)
            task.touch(self.clock())
            self._persist()
            return task

    def add_task(self, declaration: Optional[dict[str, Any]] = None) -> str:
        """
        Create a task in state CREATED.

        Tasks whose last update is older than the retention period are
        purged first.

        Returns:
            New task id
        """
        now = self.clock()
        task = Task(created=now, last_update=now, declaration=mask_secrets(declaration or {}))
        with self._lock:
            self._purge_expired(now)
            self._tasks[task.id] = task
            self._task_locks[task.id] = threading.RLock()
            self._most_recent = task.id
        self._persist()
        logger.debug(f"Added task {task.id}")
        return task.id

    def _purge_expired(self, now: datetime) -> None:
        expired = [
            task_id for task_id, task in self._tasks.items()
            if now - task.last_update > self.retention
        ]
        for task_id in expired:
            del self._tasks[task_id]
            self._task_locks.pop(task_id, None)
            if self._most_recent == task_id:
                self._most_recent = None
        if expired:
            logger.info(f"Purged {len(expired)} expired task(s)")

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            if task_id not in self._tasks:
                raise TaskNotFoundError(task_id)
            del self._tasks[task_id]
            self._task_locks.pop(task_id, None)
            if self._most_recent == task_id:
                self._most_recent = None
        self._persist()

    def get_task(self, task_id: str) -> Task:
        """Return a copy of the task record."""
        with self._task_lock(task_id):
            return copy.deepcopy(self._task(task_id))

    def get_task_ids(self) -> list[str]:
        with self._lock:
            return list(self._tasks)

    @property
    def most_recent_task(self) -> Optional[str]:
        return self._most_recent

    def get_state(self, task_id: str) -> TaskState:
        return self._task(task_id).state

    def transition(self, task_id: str, new_state: TaskState) -> None:
        """
        Move a task to a new state.

        Raises:
            TaskNotFoundError: Unknown task id
            InvalidTransitionError: The state machine does not allow the move
        """
        def change(task: Task) -> None:
            if new_state not in ALLOWED_TRANSITIONS[task.state]:
                raise InvalidTransitionError(
                    f"Task {task_id}: cannot move from {task.state.value} to {new_state.value}"
                )
            logger.debug(f"Task {task_id}: {task.state.value} -> {new_state.value}")
            task.state = new_state

        self._write(task_id, change)

    def update_result(
        self,
        task_id: str,
        code: int,
        status: str,
        message: str,
        errors: Optional[list[str]] = None,
    ) -> None:
        """Set the task result. Errors accumulate across updates."""
        def change(task: Task) -> None:
            accumulated = list(task.result.errors)
            for error in errors or []:
                if error not in accumulated:
                    accumulated.append(error)
            task.result = TaskResult(code=code, status=status, message=message, errors=accumulated)

        self._write(task_id, change)

    def get_result(self, task_id: str) -> TaskResult:
        return copy.deepcopy(self._task(task_id).result)

    def set_declaration(self, task_id: str, declaration: dict[str, Any]) -> None:
        def change(task: Task) -> None:
            task.declaration = mask_secrets(declaration)

        self._write(task_id, change)

    def get_declaration(self, task_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._task(task_id).declaration)

    def set_current_config(self, task_id: str, config: dict[str, Any]) -> None:
        def change(task: Task) -> None:
            task.current_config = mask_secrets(config)

        self._write(task_id, change)

    def get_current_config(self, task_id: str) -> Optional[dict[str, Any]]:
        return copy.deepcopy(self._task(task_id).current_config)

    def set_rollback_info(self, task_id: str, info: dict[str, Any]) -> None:
        def change(task: Task) -> None:
            task.rollback_info = copy.deepcopy(info)

        self._write(task_id, change)

    def get_rollback_info(self, task_id: str) -> Optional[dict[str, Any]]:
        return copy.deepcopy(self._task(task_id).rollback_info)

    def set_reboot_required(self, task_id: str, value: bool) -> None:
        def change(task: Task) -> None:
            task.reboot_required = value

        self._write(task_id, change)

    def get_reboot_required(self, task_id: str) -> bool:
        return self._task(task_id).reboot_required

    def set_plan(self, task_id: str, plan: list[dict[str, Any]]) -> None:
        def change(task: Task) -> None:
            task.plan = mask_secrets(plan)

        self._write(task_id, change)

    def set_traces(
        self,
        task_id: str,
        current: dict[str, Any],
        desired: dict[str, Any],
        diff: list[dict[str, Any]],
    ) -> None:
        def change(task: Task) -> None:
            task.trace_current = mask_secrets(current)
            task.trace_desired = mask_secrets(desired)
            task.trace_diff = mask_secrets(diff)

        self._write(task_id, change)

    def set_trace_response(self, task_id: str, value: bool) -> None:
        def change(task: Task) -> None:
            task.trace_response = value

        self._write(task_id, change)

    def add_completed_domain(self, task_id: str, domain: str) -> None:
        def change(task: Task) -> None:
            task.completed_domains.append(domain)

        self._write(task_id, change)

    # --- original configuration ---

    def has_original_config(self, machine_id: str) -> bool:
        with self._lock:
            return machine_id in self._original_configs

    def set_original_config(self, machine_id: str, common: dict[str, Any]) -> None:
        """Record the configuration a device had before its first onboarding."""
        with self._lock:
            self._original_configs[machine_id] = {
                "version": ENGINE_VERSION,
                "Common": mask_secrets(common),
            }
        self._persist()
        logger.info(f"Recorded original configuration for {machine_id}")

    def get_original_config(self, machine_id: str) -> Optional[dict[str, Any]]:
        """
        Return the original configuration of a device.

        Entries stored by an older engine are migrated to the current
        identifier scheme, re-stamped and persisted on first access.

        Returns:
            {"version": ..., "Common": {...}} or None when none was recorded
        """
        with self._lock:
            entry = self._original_configs.get(machine_id)
            if entry is None:
                return None
            if compare_versions(entry.get("version") or UNVERSIONED, ENGINE_VERSION) < 0:
                logger.info(
                    f"Migrating original configuration for {machine_id} "
                    f"from {entry.get('version') or UNVERSIONED} to {ENGINE_VERSION}"
                )
                entry = {
                    **entry,
                    "version": ENGINE_VERSION,
                    "Common": self.translator.migrate_config(entry.get("Common") or {}),
                }
                self._original_configs[machine_id] = entry
                migrated = True
            else:
                migrated = False
            result = copy.deepcopy(entry)
        if migrated:
            self._persist()
        return result

    def delete_original_config(self, machine_id: str) -> None:
        with self._lock:
            self._original_configs.pop(machine_id, None)
        self._persist()
