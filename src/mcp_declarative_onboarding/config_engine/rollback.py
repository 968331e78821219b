"""Rollback to the pre-apply snapshot.

Rollback re-reads the (partially mutated) device, plans from that state
back to the snapshot taken before apply began, and applies the plan
through the same handlers. It does not replay recorded inverse
operations, so device-side drift during the failed apply is handled too.
"""
import logging
from typing import Optional

from ..devices.base import DeviceClient, DeviceClientError
from ..utils.logging_config import timed_section
from .diff import DiffPlanner, summarize_plan
from .errors import ApplyError, RollbackError
from .executor import PlanExecutor
from .schema import DeviceConfig, RollbackOutcome
from .translator import ConfigTranslator

logger = logging.getLogger(__name__)


class RollbackManager:
    """Restore a device to a previously captured configuration."""

    def __init__(
        self,
        translator: ConfigTranslator,
        planner: DiffPlanner,
        executor: PlanExecutor,
    ):
        self.translator = translator
        self.planner = planner
        self.executor = executor

    async def rollback(
        self,
        task_id: Optional[str],
        snapshot: DeviceConfig,
        client: DeviceClient,
    ) -> RollbackOutcome:
        """
        Re-plan from the live device back to snapshot and apply it.

        Args:
            task_id: Task being rolled back (for audit records)
            snapshot: Configuration captured before apply began
            client: Device client

        Returns:
            RollbackOutcome with operation and mutation counts

        Raises:
            RollbackError: Reading, planning or applying the reverse plan failed.
                The device may be left in a mixed state.
        """
        async with timed_section("rollback", device_id=client.device_id, task_id=task_id):
            try:
                raw = await self.translator.read_device(client)
                current = self.translator.from_device_config(raw)
                operations = self.planner.plan(snapshot, current, check_references=False)
                logger.info(f"{client.device_id}: rollback plan for task {task_id}\n{summarize_plan(operations)}")
                outcome = await self.executor.apply(operations, snapshot, current, client, task_id=task_id)
            except ApplyError as e:
                raise RollbackError(f"Rollback failed: {e.describe()}", cause=e) from e
            except DeviceClientError as e:
                raise RollbackError(f"Rollback failed reading device: {e}", cause=e) from e

        logger.info(f"{client.device_id}: rolled back task {task_id} ({outcome.mutations} mutation(s))")
        return RollbackOutcome(operations=len(operations), mutations=outcome.mutations)
