"""Reconciliation coordinator - orchestrates one onboarding task end to end.

Provides a single entry point for:
1. Validating the declaration
2. Reading the device and capturing a rollback snapshot
3. Planning the ordered operation list
4. Applying the plan domain by domain
5. Rolling back on apply failure and recording the outcome
"""
import asyncio
import logging
from typing import Any, Optional

from ..devices.base import DeviceClient, DeviceClientError
from ..state_store.task import (
    CODE_ERROR,
    CODE_OK,
    CODE_RUNNING,
    CODE_UNPROCESSABLE,
    STATUS_ERROR,
    STATUS_OK,
    STATUS_ROLLING_BACK,
    Task,
)
from ..utils.logging_config import timed_section
from .diff import DiffPlanner, summarize_plan
from .errors import ApplyError, OnboardingError, PersistenceError, PlanningError, RollbackError, ValidationError
from .executor import PlanExecutor
from .rollback import RollbackManager
from .schema import DeviceConfig, TaskState
from .schema_map import DEVICE_INFO_PATH
from .translator import ConfigTranslator
from .validator import DeclarationValidator, parse_controls

logger = logging.getLogger(__name__)


class ReconciliationCoordinator:
    """
    Drive a device toward a declaration and record the run as a task.

    Usage:
        coordinator = ReconciliationCoordinator(StateStore(), client)
        task_id = await coordinator.submit(declaration)
        task = coordinator.get_task(task_id)
    """

    def __init__(
        self,
        store,
        client: DeviceClient,
        translator: Optional[ConfigTranslator] = None,
        validator: Optional[DeclarationValidator] = None,
        planner: Optional[DiffPlanner] = None,
        executor: Optional[PlanExecutor] = None,
        rollback_manager: Optional[RollbackManager] = None,
        max_parallel: int = 4,
    ):
        """
        Initialize the coordinator.

        Args:
            store: StateStore recording tasks and original configuration
            client: Client of the device being onboarded
            translator: Declaration/device translator
            validator: Declaration validator
            planner: Diff planner
            executor: Plan executor. Defaults to one of each registered handler.
            rollback_manager: Rollback manager sharing translator, planner and executor
            max_parallel: Fan-out bound for the default executor's handlers
        """
        self.store = store
        self.client = client
        self.translator = translator or ConfigTranslator()
        self.validator = validator or DeclarationValidator()
        self.planner = planner or DiffPlanner()
        self.executor = executor or PlanExecutor(translator=self.translator, max_parallel=max_parallel)
        self.rollback_manager = rollback_manager or RollbackManager(self.translator, self.planner, self.executor)
        self._background: dict[str, asyncio.Task] = {}

    @property
    def device_id(self) -> str:
        return self.client.device_id

    async def submit(self, declaration: Any) -> str:
        """
        Create a task for a declaration and run it.

        Runs to completion before returning unless the declaration sets
        "async": true, in which case the run is scheduled in the background
        and wait() can be used to await it.

        Returns:
            Task id
        """
        task_id = self.store.add_task(declaration if isinstance(declaration, dict) else {})
        logger.info(f"{self.device_id}: submitted task {task_id}")

        if isinstance(declaration, dict) and declaration.get("async") is True:
            background = asyncio.create_task(self._run(task_id, declaration))
            self._background[task_id] = background
            background.add_done_callback(lambda done: self._finished(task_id, done))
        else:
            await self._run(task_id, declaration)
        return task_id

    async def wait(self, task_id: str) -> Task:
        """Await a background run and return the finished task."""
        background = self._background.get(task_id)
        if background is not None:
            try:
                await background
            finally:
                self._background.pop(task_id, None)
        return self.store.get_task(task_id)

    def _finished(self, task_id: str, background: asyncio.Task) -> None:
        self._background.pop(task_id, None)
        if background.cancelled():
            logger.warning(f"{self.device_id}: background run of task {task_id} was cancelled")
            return
        error = background.exception()
        if error is not None:
            logger.error(f"{self.device_id}: background run of task {task_id} failed: {error!r}")

    def get_task(self, task_id: str) -> Task:
        return self.store.get_task(task_id)

    def list_task_ids(self) -> list[str]:
        return self.store.get_task_ids()

    async def inspect(self) -> dict[str, Any]:
        """Live device configuration rendered as a declaration."""
        async with timed_section("inspect", device_id=self.device_id):
            raw = await self.translator.read_device(self.client)
        return self.translator.to_declaration(self.translator.from_device_config(raw))

    async def restore_original(self, run_async: bool = False) -> str:
        """
        Submit the configuration recorded before the device's first onboarding.

        Raises:
            OnboardingError: No original configuration is recorded for the device
        """
        machine_id = await self.machine_id()
        entry = self.store.get_original_config(machine_id)
        if entry is None:
            raise OnboardingError(f"No original configuration recorded for {machine_id}")

        declaration = self.translator.to_declaration(DeviceConfig.from_dict(entry))
        if run_async:
            declaration["async"] = True
        logger.info(f"{self.device_id}: restoring original configuration of {machine_id}")
        return await self.submit(declaration)

    async def machine_id(self) -> str:
        """Stable identity of the device, falling back to the inventory id."""
        try:
            info = await self.client.get(DEVICE_INFO_PATH)
        except DeviceClientError as e:
            logger.warning(f"{self.device_id}: device info unavailable ({e}), using device id")
            return self.device_id
        return (info or {}).get("machineId") or self.device_id

    # --- pipeline ---

    async def _run(self, task_id: str, declaration: Any) -> None:
        try:
            async with timed_section("reconcile", device_id=self.device_id, task_id=task_id):
                await self._reconcile(task_id, declaration)
        except PersistenceError:
            raise
        except ValidationError as e:
            self._fail(task_id, CODE_UNPROCESSABLE, "bad declaration", e.errors)
        except PlanningError as e:
            self._fail(task_id, CODE_UNPROCESSABLE, "bad declaration", [str(e)])
        except Exception as e:
            logger.exception(f"{self.device_id}: task {task_id} failed unexpectedly")
            self._fail(task_id, CODE_ERROR, "unexpected error", [str(e) or type(e).__name__])

    def _fail(self, task_id: str, code: int, message: str, errors: list[str]) -> None:
        self.store.update_result(task_id, code, STATUS_ERROR, message, errors)
        if not self.store.get_state(task_id).terminal:
            self.store.transition(task_id, TaskState.FAILED)
        logger.error(f"{self.device_id}: task {task_id} failed: {message}: {'; '.join(errors)}")

    async def _reconcile(self, task_id: str, declaration: Any) -> None:
        self.store.transition(task_id, TaskState.VALIDATING)

        validation = self.validator.validate(declaration)
        for warning in validation.warnings:
            logger.warning(f"{self.device_id}: {warning}")
        if not validation.valid:
            raise ValidationError(validation.errors)

        controls = parse_controls(declaration)
        if controls.traceResponse:
            self.store.set_trace_response(task_id, True)
        desired = self.translator.to_device_config(declaration)

        try:
            raw = await self.translator.read_device(self.client)
        except DeviceClientError as e:
            self._fail(task_id, CODE_ERROR, "failed to read device configuration", [str(e)])
            return
        current = self.translator.from_device_config(raw)
        self.store.set_current_config(task_id, current.to_dict())
        await self._capture_original(current)

        operations = self.planner.plan(desired, current)

        logger.info(f"{self.device_id}: task {task_id}\n{summarize_plan(operations)}")
        plan = [op.to_dict() for op in operations]
        self.store.set_plan(task_id, plan)
        if controls.trace or controls.traceResponse:
            self.store.set_traces(task_id, current.to_dict(), desired.to_dict(), plan)
        self.store.set_rollback_info(task_id, {"snapshot": current.to_dict(), "operations": len(operations)})

        self.store.transition(task_id, TaskState.APPLYING)
        if controls.dryRun:
            self.store.update_result(task_id, CODE_OK, STATUS_OK, f"dry run: {len(operations)} operation(s) planned")
            self.store.transition(task_id, TaskState.SUCCEEDED)
            return

        try:
            outcome = await self.executor.apply(
                operations,
                desired,
                current,
                self.client,
                task_id=task_id,
                on_domain_complete=lambda domain: self.store.add_completed_domain(task_id, domain),
            )
        except ApplyError as e:
            await self._recover(task_id, e, current)
            return

        self.store.set_reboot_required(task_id, outcome.reboot_required)
        self.store.update_result(task_id, CODE_OK, STATUS_OK, "success")
        self.store.transition(task_id, TaskState.SUCCEEDED)
        logger.info(f"{self.device_id}: task {task_id} succeeded ({outcome.mutations} mutation(s))")

    async def _capture_original(self, current: DeviceConfig) -> None:
        machine_id = await self.machine_id()
        if not self.store.has_original_config(machine_id):
            self.store.set_original_config(machine_id, current.to_dict()["Common"])

    async def _recover(self, task_id: str, error: ApplyError, snapshot: DeviceConfig) -> None:
        """Roll back after an apply failure and record the outcome."""
        if not error.mutations:
            self._fail(task_id, CODE_UNPROCESSABLE, "apply failed, no changes made", [error.describe()])
            return

        self.store.update_result(task_id, CODE_RUNNING, STATUS_ROLLING_BACK, "rolling back", [error.describe()])
        self.store.transition(task_id, TaskState.ROLLING_BACK)
        logger.warning(f"{self.device_id}: task {task_id} rolling back after {error.mutations} mutation(s)")

        try:
            await self.rollback_manager.rollback(task_id, snapshot, self.client)
        except RollbackError as e:
            self._fail(task_id, CODE_ERROR, "rollback failed", [str(e)])
            return

        self.store.update_result(task_id, CODE_UNPROCESSABLE, STATUS_ERROR, "invalid config - rolled back")
        self.store.transition(task_id, TaskState.ROLLED_BACK)
        logger.info(f"{self.device_id}: task {task_id} rolled back")
