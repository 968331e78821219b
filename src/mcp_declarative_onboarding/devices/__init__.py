"""Device clients for the appliance management API."""
from .base import DeviceClient, DeviceClientError, DeviceConfig
from .memory import InMemoryDeviceClient
from .rest import RestDeviceClient

__all__ = [
    "DeviceClient",
    "DeviceClientError",
    "DeviceConfig",
    "InMemoryDeviceClient",
    "RestDeviceClient",
    "DEVICE_TYPES",
    "create_device",
]

# Device type registry
DEVICE_TYPES = {
    "rest": RestDeviceClient,
    "memory": InMemoryDeviceClient,
}


def create_device(device_id: str, config: dict) -> DeviceClient:
    """Factory function to create device clients."""
    device_type = config.get("type", "").lower()
    if device_type not in DEVICE_TYPES:
        raise ValueError(f"Unknown device type: {device_type}")

    if device_type == "memory":
        return InMemoryDeviceClient(device_id, strict_references=config.get("strict_references", True))
    return RestDeviceClient(device_id, DeviceConfig(**config))
