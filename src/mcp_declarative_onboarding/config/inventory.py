"""Device inventory management from YAML configuration."""
import logging
from pathlib import Path
from typing import Optional

import yaml

from ..devices import create_device
from ..devices.base import DeviceClient

logger = logging.getLogger(__name__)


class DeviceInventory:
    """Manages the device inventory loaded from YAML config.

    ```yaml
    defaults:
      type: rest
      username: admin
      verify_ssl: false
    devices:
      bigip1:
        host: 192.0.2.10
        password_env: BIGIP1_PASSWORD
      lab:
        type: memory
    ```
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config()
        self._config: dict = {}
        self._devices: dict[str, DeviceClient] = {}
        self._load_config()

    def _find_config(self) -> str:
        """Find the devices.yaml config file."""
        search_paths = [
            Path.cwd() / "configs" / "devices.yaml",
            Path.cwd() / "devices.yaml",
            Path.home() / ".config" / "mcp-declarative-onboarding" / "devices.yaml",
            Path("/etc/mcp-declarative-onboarding/devices.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find devices.yaml. Create one in ./configs/devices.yaml"
        )

    def _load_config(self) -> None:
        """Load the YAML configuration."""
        with open(self.config_path) as f:
            self._config = yaml.safe_load(f) or {}

        # Apply defaults
        defaults = self._config.get("defaults", {})
        for device_id, device_config in self._config.get("devices", {}).items():
            for key, value in defaults.items():
                if key not in device_config:
                    device_config[key] = value
            device_config.setdefault("name", device_id)

        logger.debug(f"Loaded {len(self.get_device_ids())} device(s) from {self.config_path}")

    def get_device_ids(self) -> list[str]:
        """Get all device IDs."""
        return list(self._config.get("devices", {}).keys())

    def get_device_config(self, device_id: str) -> dict:
        """Get raw config for a device."""
        devices = self._config.get("devices", {})
        if device_id not in devices:
            raise KeyError(f"Unknown device: {device_id}")
        return devices[device_id]

    def get_device(self, device_id: str) -> DeviceClient:
        """Get or create a device client."""
        if device_id not in self._devices:
            config = self.get_device_config(device_id)
            self._devices[device_id] = create_device(device_id, config)
        return self._devices[device_id]

    def default_device_id(self) -> str:
        """First device of the inventory."""
        ids = self.get_device_ids()
        if not ids:
            raise KeyError(f"No devices defined in {self.config_path}")
        return ids[0]

    async def close_all(self) -> None:
        """Close all device clients."""
        for device in self._devices.values():
            await device.close()
        self._devices.clear()
