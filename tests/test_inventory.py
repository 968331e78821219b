"""Tests for device inventory and engine settings."""
import pytest
import tempfile
import os
from pathlib import Path
from mcp_declarative_onboarding.config.inventory import DeviceInventory
from mcp_declarative_onboarding.config.settings import EngineSettings
from mcp_declarative_onboarding.devices import InMemoryDeviceClient, RestDeviceClient


class TestDeviceInventory:
    """Tests for DeviceInventory class."""

    @pytest.fixture
    def temp_config(self):
        """Create a temporary config file for testing."""
        config_content = """
defaults:
  type: rest
  password_env: "TEST_PASSWORD"
  timeout: 30
  verify_ssl: false

devices:
  bigip1:
    host: 192.0.2.245
    username: admin

  lab:
    type: memory
    name: "Lab Appliance"
"""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(config_content)
            f.flush()
            yield f.name
        os.unlink(f.name)

    def test_load_config(self, temp_config):
        """Inventory loads config file correctly."""
        inv = DeviceInventory(temp_config)
        assert inv.get_device_ids() == ["bigip1", "lab"]

    def test_get_device_config(self, temp_config):
        """Can get raw device config with defaults merged."""
        inv = DeviceInventory(temp_config)
        config = inv.get_device_config("bigip1")
        assert config["type"] == "rest"
        assert config["host"] == "192.0.2.245"
        assert config["password_env"] == "TEST_PASSWORD"
        assert config["verify_ssl"] is False

    def test_device_values_override_defaults(self, temp_config):
        """Per-device settings win over defaults."""
        inv = DeviceInventory(temp_config)
        assert inv.get_device_config("lab")["type"] == "memory"

    def test_name_defaults_to_id(self, temp_config):
        """Devices without a name are named by their id."""
        inv = DeviceInventory(temp_config)
        assert inv.get_device_config("bigip1")["name"] == "bigip1"
        assert inv.get_device_config("lab")["name"] == "Lab Appliance"

    def test_unknown_device(self, temp_config):
        """Unknown device raises KeyError."""
        inv = DeviceInventory(temp_config)
        with pytest.raises(KeyError, match="Unknown device"):
            inv.get_device_config("nonexistent")

    def test_get_device_is_cached(self, temp_config):
        """Device clients are created once per id."""
        inv = DeviceInventory(temp_config)

        rest = inv.get_device("bigip1")
        lab = inv.get_device("lab")

        assert isinstance(rest, RestDeviceClient)
        assert isinstance(lab, InMemoryDeviceClient)
        assert inv.get_device("lab") is lab

    def test_default_device_is_first(self, temp_config):
        """The first listed device is the default."""
        inv = DeviceInventory(temp_config)
        assert inv.default_device_id() == "bigip1"

    def test_empty_inventory_has_no_default(self, tmp_path):
        """An inventory without devices has no default device."""
        path = tmp_path / "devices.yaml"
        path.write_text("defaults: {}\n")

        inv = DeviceInventory(str(path))

        with pytest.raises(KeyError):
            inv.default_device_id()

    def test_missing_file(self, tmp_path):
        """An explicit path that does not exist fails to load."""
        with pytest.raises(FileNotFoundError):
            DeviceInventory(str(tmp_path / "absent.yaml"))

    @pytest.mark.asyncio
    async def test_close_all(self, temp_config):
        """close_all drops the cached clients."""
        inv = DeviceInventory(temp_config)
        first = inv.get_device("lab")

        await inv.close_all()

        assert inv.get_device("lab") is not first


class TestEngineSettings:
    """Tests for EngineSettings loading."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("ONBOARD_SETTINGS", "ONBOARD_STATE_DIR", "ONBOARD_RETENTION_DAYS",
                     "ONBOARD_MAX_PARALLEL", "ONBOARD_DEVICE"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        """Defaults apply without a file or environment."""
        settings = EngineSettings.load()

        assert settings.state_dir == Path.home() / ".onboarding"
        assert settings.retention_days == 7
        assert settings.max_parallel == 4
        assert settings.device_id is None
        assert settings.state_file == Path.home() / ".onboarding" / "state.yaml"

    def test_from_yaml(self, tmp_path):
        """Known keys are read and unknown keys ignored."""
        path = tmp_path / "settings.yaml"
        path.write_text(f"state_dir: {tmp_path / 'state'}\nretention_days: 3\ncolour: blue\n")

        settings = EngineSettings.from_yaml(str(path))

        assert settings.state_dir == tmp_path / "state"
        assert settings.retention_days == 3
        assert settings.max_parallel == 4

    def test_settings_file_from_env(self, tmp_path, monkeypatch):
        """ONBOARD_SETTINGS names the settings file."""
        path = tmp_path / "settings.yaml"
        path.write_text("max_parallel: 2\n")
        monkeypatch.setenv("ONBOARD_SETTINGS", str(path))

        settings = EngineSettings.load()

        assert settings.max_parallel == 2

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        """Environment variables take precedence over the file."""
        path = tmp_path / "settings.yaml"
        path.write_text("retention_days: 3\ndevice_id: lab\n")
        monkeypatch.setenv("ONBOARD_RETENTION_DAYS", "30")
        monkeypatch.setenv("ONBOARD_DEVICE", "bigip1")
        monkeypatch.setenv("ONBOARD_STATE_DIR", str(tmp_path / "elsewhere"))

        settings = EngineSettings.load(str(path))

        assert settings.retention_days == 30
        assert settings.device_id == "bigip1"
        assert settings.state_dir == tmp_path / "elsewhere"

    def test_invalid_integer_ignored(self, monkeypatch):
        """Non-integer values keep the previous setting."""
        monkeypatch.setenv("ONBOARD_RETENTION_DAYS", "a week")

        settings = EngineSettings.load()

        assert settings.retention_days == 7

    def test_max_parallel_at_least_one(self, monkeypatch):
        """Parallelism never drops below one."""
        monkeypatch.setenv("ONBOARD_MAX_PARALLEL", "0")

        settings = EngineSettings.load()

        assert settings.max_parallel == 1
