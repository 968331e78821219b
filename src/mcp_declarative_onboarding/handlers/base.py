"""Base domain handler.

A handler applies its domain's slice of the plan against the device.
Operations run strictly in the order the handler returns from order();
subclasses override the per-change hooks where a class needs more than
the generic create/modify/delete calls.
"""
import asyncio
import logging
from abc import ABC
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..config_engine.errors import ApplyError
from ..config_engine.schema import ChangeType, ConfigItem, HandlerOutcome, Layout, Operation, PlanSlice
from ..config_engine.schema_map import CM_DEVICE_PATH, COMMON, get_item, item_path
from ..config_engine.translator import ConfigTranslator, self_device
from ..devices.base import DeviceClient, DeviceClientError
from ..utils.masking import contains_secrets

logger = logging.getLogger(__name__)


class DomainHandler(ABC):
    """Apply one domain's operations to a device."""

    domain: str = ""

    def __init__(self, translator: Optional[ConfigTranslator] = None, max_parallel: int = 4):
        self.translator = translator or ConfigTranslator()
        self.max_parallel = max_parallel

    async def process(self, plan_slice: PlanSlice, client: DeviceClient) -> HandlerOutcome:
        """
        Apply a contiguous run of this domain's operations.

        Args:
            plan_slice: Ordered operations plus the desired/current configs
            client: Device client

        Returns:
            HandlerOutcome with operation count and reboot flag

        Raises:
            ApplyError: A device call failed
        """
        outcome = HandlerOutcome(domain=self.domain)
        for op in self.order(plan_slice.operations):
            logger.debug(f"{client.device_id}: {op.change_type.value} {op.schema_class} {op.name or ''}")
            await self.apply(op, plan_slice, client, outcome)
            outcome.operations += 1
        return outcome

    def order(self, operations: list[Operation]) -> list[Operation]:
        """Intra-domain ordering; plan order by default."""
        return list(operations)

    async def apply(self, op: Operation, plan_slice: PlanSlice, client: DeviceClient, outcome: HandlerOutcome) -> None:
        if op.change_type == ChangeType.CREATE:
            await self.create(op, plan_slice, client)
        elif op.change_type == ChangeType.MODIFY:
            await self.modify(op, plan_slice, client, outcome)
        else:
            await self.delete(op, plan_slice, client)

    # --- paths ---

    def partition(self, item: ConfigItem, op: Operation, plan_slice: PlanSlice) -> str:
        return COMMON

    def collection_path(self, item: ConfigItem, op: Operation) -> str:
        return item.path

    def object_path(self, item: ConfigItem, op: Operation, plan_slice: PlanSlice) -> str:
        return item_path(item, op.name, self.partition(item, op, plan_slice))

    async def self_device_path(self, op: Operation, client: DeviceClient) -> str:
        """Item path of the device's own cm device object."""
        response = await self.call(op, CM_DEVICE_PATH, client.get)
        body = self_device(response)
        if body is None:
            raise ApplyError(
                "local device object not found", schema_class=op.schema_class, path=CM_DEVICE_PATH
            )
        partition = body.get("partition")
        name = f"~{partition}~{body['name']}" if partition else body["name"]
        return f"{CM_DEVICE_PATH}/{name}"

    # --- generic operations ---

    async def create(self, op: Operation, plan_slice: PlanSlice, client: DeviceClient) -> None:
        item = get_item(op.schema_class)
        body = self.translator.to_device_body(op.schema_class, op.name, op.properties)
        if item.partitioned:
            body["partition"] = self.partition(item, op, plan_slice)
        path = self.collection_path(item, op)
        await self.call(op, path, client.create_or_modify, body, silent=contains_secrets(op.properties))

    async def modify(
        self,
        op: Operation,
        plan_slice: PlanSlice,
        client: DeviceClient,
        outcome: HandlerOutcome,
    ) -> None:
        item = get_item(op.schema_class)
        silent = contains_secrets(op.properties)

        if item.layout == Layout.SINGLETON:
            for path, body in self.translator.to_device_bodies(op.schema_class, op.properties).items():
                await self.call(op, path, client.modify, body, silent=silent)
            return

        if item.layout == Layout.SELF_DEVICE:
            path = await self.self_device_path(op, client)
            body = self.translator.to_device_body(op.schema_class, None, op.properties)
            await self.call(op, path, client.modify, body, silent=silent)
            return

        if item.nameless:
            raise ApplyError(
                f"{self.domain} handler cannot modify {op.schema_class}", schema_class=op.schema_class
            )

        body = self.translator.to_device_body(op.schema_class, None, op.properties, include_create_only=False)
        body.pop("partition", None)
        if not body:
            return
        path = self.object_path(item, op, plan_slice)
        await self.call(op, path, client.modify, body, silent=silent)

    async def delete(self, op: Operation, plan_slice: PlanSlice, client: DeviceClient) -> None:
        item = get_item(op.schema_class)
        path = self.object_path(item, op, plan_slice)
        await self.call(op, path, client.delete, missing_ok=True)

    async def replace(self, op: Operation, plan_slice: PlanSlice, client: DeviceClient) -> None:
        """Delete and re-create an object whose identity property changed."""
        props = plan_slice.desired.get(op.schema_class, op.name) or op.properties
        current = plan_slice.current.get(op.schema_class, op.name) or {}
        logger.info(f"{client.device_id}: replacing {op.schema_class} {op.name}")
        await self.delete(Operation(op.schema_class, op.name, ChangeType.DELETE, current), plan_slice, client)
        await self.create(Operation(op.schema_class, op.name, ChangeType.CREATE, props), plan_slice, client)

    # --- helpers ---

    async def call(self, op: Operation, path: str, method: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run one device call, converting client failures into ApplyError."""
        try:
            return await method(path, *args, **kwargs)
        except DeviceClientError as e:
            raise ApplyError(
                f"{op.change_type.value} failed: {e}",
                schema_class=op.schema_class,
                name=op.name,
                path=path,
            ) from e

    async def gather_bounded(self, calls: Iterable[Callable[[], Awaitable[Any]]]) -> list[Any]:
        """Run independent calls concurrently, at most max_parallel at a time."""
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def run(call: Callable[[], Awaitable[Any]]) -> Any:
            async with semaphore:
                return await call()

        return await asyncio.gather(*(run(call) for call in calls))

