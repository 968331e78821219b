"""MCP Server for declarative appliance onboarding.

Drives network appliances toward a submitted declaration and records
each run as a task with rollback on failure.

Tools exposed:
- list_devices: List all configured appliances
- submit_declaration: Reconcile a device against a declaration
- get_task: Get state and result of a task
- list_tasks: List known task ids
- inspect_device: Render the live device configuration as a declaration
- restore_original: Restore the configuration recorded before first onboarding
- get_audit_log: Recent device mutations from the audit log
"""
import asyncio
import json
import logging
import os
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
    Resource,
)
from pydantic import AnyUrl

from .config.inventory import DeviceInventory
from .config.settings import EngineSettings
from .config_engine.engine import ReconciliationCoordinator
from .config_engine.translator import ConfigTranslator
from .state_store.persistence import YamlFilePersistence
from .state_store.store import StateStore
from .utils.logging_config import setup_logging, timed_section
from .utils.audit_log import setup_audit_logging, get_recent_changes

# Initialize audit logging
setup_audit_logging()

# Configure logging with file output and performance tracking
setup_logging()
logger = logging.getLogger(__name__)

# Globals (initialized on first use)
inventory: Optional[DeviceInventory] = None
settings: Optional[EngineSettings] = None
state_store: Optional[StateStore] = None
coordinators: dict[str, ReconciliationCoordinator] = {}


def get_inventory() -> DeviceInventory:
    """Get or create the device inventory."""
    global inventory
    if inventory is None:
        config_path = os.environ.get("ONBOARD_DEVICES_CONFIG")
        inventory = DeviceInventory(config_path)
    return inventory


def get_settings() -> EngineSettings:
    global settings
    if settings is None:
        settings = EngineSettings.load()
    return settings


def get_state_store() -> StateStore:
    """Get or create the state store."""
    global state_store
    if state_store is None:
        cfg = get_settings()
        state_store = StateStore(
            YamlFilePersistence(cfg.state_file),
            ConfigTranslator(),
            retention_days=cfg.retention_days,
        )
    return state_store


def get_coordinator(device_id: Optional[str] = None) -> ReconciliationCoordinator:
    """Get or create the coordinator of a device."""
    inv = get_inventory()
    device_id = device_id or get_settings().device_id or inv.default_device_id()
    if device_id not in coordinators:
        coordinators[device_id] = ReconciliationCoordinator(
            get_state_store(),
            inv.get_device(device_id),
            max_parallel=get_settings().max_parallel,
        )
    return coordinators[device_id]


# Create MCP server
server = Server("mcp-declarative-onboarding")


# === TOOLS ===

DEVICE_ID_PROPERTY = {
    "type": "string",
    "description": "Device ID from the inventory (default: ONBOARD_DEVICE or the first device)"
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    return [
        Tool(
            name="list_devices",
            description="List all configured appliances with their connection info",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="submit_declaration",
            description=(
                "Reconcile a device against a declaration. Returns the task id and, "
                "unless the declaration sets async: true, the finished task."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "device_id": DEVICE_ID_PROPERTY,
                    "declaration": {
                        "type": "object",
                        "description": "Declaration with schemaVersion, class Device and a Common tenant"
                    }
                },
                "required": ["declaration"]
            }
        ),
        Tool(
            name="get_task",
            description="Get state, result and progress of a task",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {
                        "type": "string",
                        "description": "Task ID returned by submit_declaration"
                    },
                    "include_trace": {
                        "type": "boolean",
                        "description": "Include current/desired/diff traces when recorded (always included when the declaration set controls.traceResponse)",
                        "default": False
                    }
                },
                "required": ["task_id"]
            }
        ),
        Tool(
            name="list_tasks",
            description="List the ids of all retained tasks",
            inputSchema={
                "type": "object",
                "properties": {},
                "required": []
            }
        ),
        Tool(
            name="inspect_device",
            description="Read the live configuration of a device and render it as a declaration",
            inputSchema={
                "type": "object",
                "properties": {
                    "device_id": DEVICE_ID_PROPERTY
                },
                "required": []
            }
        ),
        Tool(
            name="restore_original",
            description="Submit the configuration recorded before the device's first onboarding",
            inputSchema={
                "type": "object",
                "properties": {
                    "device_id": DEVICE_ID_PROPERTY
                },
                "required": []
            }
        ),
        Tool(
            name="get_audit_log",
            description="Get recent device mutations from the audit log",
            inputSchema={
                "type": "object",
                "properties": {
                    "device_id": {
                        "type": "string",
                        "description": "Filter by device ID"
                    },
                    "task_id": {
                        "type": "string",
                        "description": "Filter by task ID"
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of records",
                        "default": 20
                    }
                },
                "required": []
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    device_id = arguments.get("device_id", "N/A")

    async with timed_section(f"tool:{name}", device_id=device_id):
        try:
            if name == "list_devices":
                return await handle_list_devices(get_inventory())

            elif name == "submit_declaration":
                return await handle_submit_declaration(
                    arguments.get("device_id"),
                    arguments["declaration"]
                )

            elif name == "get_task":
                return await handle_get_task(
                    arguments["task_id"],
                    arguments.get("include_trace", False)
                )

            elif name == "list_tasks":
                return await handle_list_tasks()

            elif name == "inspect_device":
                return await handle_inspect_device(arguments.get("device_id"))

            elif name == "restore_original":
                return await handle_restore_original(arguments.get("device_id"))

            elif name == "get_audit_log":
                return await handle_get_audit_log(
                    arguments.get("device_id"),
                    arguments.get("task_id"),
                    arguments.get("limit", 20)
                )

            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return [TextContent(type="text", text=f"Error: {str(e)}")]


# === TOOL HANDLERS ===

async def handle_list_devices(inv: DeviceInventory) -> list[TextContent]:
    """List all configured devices."""
    devices = []
    for device_id in inv.get_device_ids():
        config = inv.get_device_config(device_id)
        devices.append({
            "id": device_id,
            "name": config.get("name", device_id),
            "type": config.get("type"),
            "host": config.get("host"),
        })

    return [TextContent(
        type="text",
        text=json.dumps({"devices": devices}, indent=2)
    )]


async def handle_submit_declaration(device_id: Optional[str], declaration: dict) -> list[TextContent]:
    """Submit a declaration and report the task."""
    coordinator = get_coordinator(device_id)
    task_id = await coordinator.submit(declaration)
    task = coordinator.get_task(task_id)

    return [TextContent(
        type="text",
        text=json.dumps(task.to_response(), indent=2, default=str)
    )]


async def handle_get_task(task_id: str, include_trace: bool = False) -> list[TextContent]:
    """Report one task."""
    task = get_state_store().get_task(task_id)

    return [TextContent(
        type="text",
        text=json.dumps(task.to_response(include_trace=include_trace), indent=2, default=str)
    )]


async def handle_list_tasks() -> list[TextContent]:
    """List retained task ids."""
    store = get_state_store()

    return [TextContent(
        type="text",
        text=json.dumps({
            "tasks": store.get_task_ids(),
            "most_recent": store.most_recent_task,
        }, indent=2)
    )]


async def handle_inspect_device(device_id: Optional[str]) -> list[TextContent]:
    """Render live device configuration as a declaration."""
    coordinator = get_coordinator(device_id)
    declaration = await coordinator.inspect()

    return [TextContent(
        type="text",
        text=json.dumps(declaration, indent=2, default=str)
    )]


async def handle_restore_original(device_id: Optional[str]) -> list[TextContent]:
    """Submit the recorded original configuration."""
    coordinator = get_coordinator(device_id)
    task_id = await coordinator.restore_original()
    task = coordinator.get_task(task_id)

    return [TextContent(
        type="text",
        text=json.dumps(task.to_response(), indent=2, default=str)
    )]


async def handle_get_audit_log(
    device_id: Optional[str] = None,
    task_id: Optional[str] = None,
    limit: int = 20
) -> list[TextContent]:
    """Get recent device mutations from the audit log."""
    records = get_recent_changes(
        device_id=device_id,
        task_id=task_id,
        limit=limit
    )

    formatted_records = []
    for r in records:
        formatted_records.append({
            "timestamp": r.timestamp,
            "device_id": r.device_id,
            "task_id": r.task_id,
            "method": r.method,
            "path": r.path,
            "success": r.success,
            "payload": r.payload,
            "error": r.error,
        })

    return [TextContent(
        type="text",
        text=json.dumps({
            "total_records": len(formatted_records),
            "filters": {
                "device_id": device_id,
                "task_id": task_id,
                "limit": limit,
            },
            "records": formatted_records,
        }, indent=2, default=str)
    )]


# === RESOURCES ===

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    inv = get_inventory()
    resources = []

    for device_id in inv.get_device_ids():
        config = inv.get_device_config(device_id)
        resources.append(Resource(
            uri=AnyUrl(f"onboarding://{device_id}/declaration"),
            name=f"{config.get('name', device_id)} Declaration",
            description=f"Live configuration of {device_id} as a declaration",
            mimeType="application/json",
        ))

    return resources


@server.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource."""
    # Parse URI: onboarding://device_id/declaration
    uri_str = str(uri)
    if uri_str.startswith("onboarding://"):
        parts = uri_str[len("onboarding://"):].split("/")
        if len(parts) >= 2 and parts[1] == "declaration":
            result = await handle_inspect_device(parts[0])
            return result[0].text

    return json.dumps({"error": f"Unknown resource: {uri}"})


def main():
    """Run the MCP server."""

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
    finally:
        # Cleanup
        if inventory:
            asyncio.run(inventory.close_all())


if __name__ == "__main__":
    main()
