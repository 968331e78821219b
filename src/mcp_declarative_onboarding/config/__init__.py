"""Engine settings and device inventory."""
from .settings import EngineSettings
from .inventory import DeviceInventory

__all__ = ["EngineSettings", "DeviceInventory"]
