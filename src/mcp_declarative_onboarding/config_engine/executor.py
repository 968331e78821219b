"""Executor for applying operation plans to devices.

Splits the plan into contiguous same-domain runs and hands each run to
its domain handler, strictly in plan order. Every device mutation is
counted and written to the audit log.
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from ..devices.base import DeviceClient, DeviceClientError
from ..utils.audit_log import AuditTrail
from ..utils.logging_config import timed_section
from .errors import ApplyError
from .schema import ApplyOutcome, DeviceConfig, Operation, PlanSlice
from .schema_map import SCHEMA_MAP
from .translator import ConfigTranslator

logger = logging.getLogger(__name__)


class AuditingClient(DeviceClient):
    """Device client wrapper that counts and audits mutations."""

    def __init__(self, inner: DeviceClient, task_id: Optional[str] = None):
        super().__init__(inner.device_id)
        self.inner = inner
        self.audit = AuditTrail(inner.device_id, task_id)
        self.mutations = 0

    async def get(self, path: str) -> Any:
        return await self.inner.get(path)

    async def _mutate(
        self,
        method: str,
        path: str,
        call: Callable[[], Awaitable[Any]],
        body: Optional[dict] = None,
        silent: bool = False,
    ) -> Any:
        try:
            result = await call()
        except DeviceClientError as e:
            self.audit.log_mutation(method, path, False, body, silent=silent, error=str(e))
            raise
        self.mutations += 1
        self.audit.log_mutation(method, path, True, body, silent=silent)
        return result

    async def create(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        return await self._mutate(
            "create", path, lambda: self.inner.create(path, body, silent=silent), body, silent
        )

    async def create_or_modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        return await self._mutate(
            "create_or_modify", path, lambda: self.inner.create_or_modify(path, body, silent=silent), body, silent
        )

    async def modify(self, path: str, body: dict[str, Any], silent: bool = False) -> Any:
        return await self._mutate(
            "modify", path, lambda: self.inner.modify(path, body, silent=silent), body, silent
        )

    async def delete(self, path: str, missing_ok: bool = False) -> None:
        return await self._mutate("delete", path, lambda: self.inner.delete(path, missing_ok=missing_ok))


def split_by_domain(operations: list[Operation]) -> list[tuple[str, list[Operation]]]:
    """Contiguous runs of operations belonging to the same domain."""
    runs: list[tuple[str, list[Operation]]] = []
    for op in operations:
        domain = SCHEMA_MAP[op.schema_class].domain
        if runs and runs[-1][0] == domain:
            runs[-1][1].append(op)
        else:
            runs.append((domain, [op]))
    return runs


class PlanExecutor:
    """Apply an ordered plan through the domain handlers."""

    def __init__(
        self,
        handlers: Optional[dict] = None,
        translator: Optional[ConfigTranslator] = None,
        max_parallel: int = 4,
    ):
        """
        Initialize executor.

        Args:
            handlers: Mapping of domain to DomainHandler. Defaults to one of each registered handler.
            translator: Translator shared by the default handlers
            max_parallel: Fan-out bound for handlers that apply sub-steps concurrently
        """
        if handlers is None:
            from ..handlers import create_handlers
            handlers = create_handlers(translator, max_parallel)
        self.handlers = handlers

    async def apply(
        self,
        operations: list[Operation],
        desired: DeviceConfig,
        current: DeviceConfig,
        client: DeviceClient,
        task_id: Optional[str] = None,
        on_domain_complete: Optional[Callable[[str], Any]] = None,
    ) -> ApplyOutcome:
        """
        Execute a plan on a device.

        Args:
            operations: Ordered plan from DiffPlanner
            desired: Desired configuration the plan was computed from
            current: Device configuration the plan was computed from
            client: Device client
            task_id: Task the mutations are audited under
            on_domain_complete: Called with the domain name after each run succeeds

        Returns:
            ApplyOutcome with mutation count, reboot flag and completed domains

        Raises:
            ApplyError: A handler failed; its mutations attribute counts the
                mutations that succeeded before the failure
        """
        auditing = AuditingClient(client, task_id)
        outcome = ApplyOutcome()

        for domain, ops in split_by_domain(operations):
            handler = self.handlers.get(domain)
            if handler is None:
                raise ApplyError(f"No handler registered for domain {domain}", schema_class=ops[0].schema_class)

            plan_slice = PlanSlice(domain=domain, operations=ops, desired=desired, current=current)
            try:
                async with timed_section(f"domain:{domain}", device_id=client.device_id, operations=len(ops)):
                    result = await handler.process(plan_slice, auditing)
            except ApplyError as e:
                e.mutations = auditing.mutations
                logger.error(f"{client.device_id}: {domain} failed after {auditing.mutations} mutation(s): {e.describe()}")
                raise
            except DeviceClientError as e:
                error = ApplyError(str(e), schema_class=ops[0].schema_class, path=e.path)
                error.mutations = auditing.mutations
                raise error from e

            outcome.reboot_required = outcome.reboot_required or result.reboot_required
            outcome.domains.append(domain)
            logger.info(f"{client.device_id}: {domain} applied ({result.operations} operation(s))")
            if on_domain_complete is not None:
                on_domain_complete(domain)

        outcome.mutations = auditing.mutations
        return outcome
