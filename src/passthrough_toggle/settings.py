"""
Toggle Settings - where the configuration artifacts live and which
drivers and commands are involved.

Defaults match a Debian/Ubuntu host with an NVIDIA card. A JSON file can
override any field; the path comes from ``--config``, then
``$VFIO_SWITCH_CONFIG``, then ``/etc/vfio-switch/config.json``.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional, Union

from common.exceptions import InvalidConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/vfio-switch/config.json")
CONFIG_ENV_VAR = "VFIO_SWITCH_CONFIG"

_PATH_FIELDS = ("modprobe_conf", "bind_list", "backup_dir")
_VENDOR_ID = re.compile(r"^[0-9a-f]{4}$")


@dataclass
class ToggleSettings:
    """Configuration shared by vfio-toggle and vfio-attach."""

    modprobe_conf: Path = Path("/etc/modprobe.d/vfio.conf")
    bind_list: Path = Path("/etc/vfio-bind.list")
    passthrough_driver: str = "vfio-pci"
    vendor_driver: str = "nvidia"  # host driver named in status output
    vendor_id: str = "10de"
    initramfs_command: Optional[List[str]] = None  # None: auto-detect
    reboot_command: List[str] = field(default_factory=lambda: ["reboot"])
    reboot_delay: int = 5
    setup_command: str = "sudo ./system-config.sh"
    backup_dir: Optional[Path] = None  # VM definition backups; None: cwd
    shutdown_timeout: int = 120

    def validate(self) -> None:
        """
        Check field values.

        Raises:
            InvalidConfigError: On the first bad value
        """
        if not _VENDOR_ID.match(self.vendor_id):
            raise InvalidConfigError("vendor_id", self.vendor_id, "expected 4 lowercase hex digits")
        if not self.passthrough_driver:
            raise InvalidConfigError("passthrough_driver", self.passthrough_driver, "must not be empty")
        if self.reboot_delay < 0:
            raise InvalidConfigError("reboot_delay", self.reboot_delay, "must not be negative")
        if self.shutdown_timeout <= 0:
            raise InvalidConfigError("shutdown_timeout", self.shutdown_timeout, "must be positive")
        for name in ("initramfs_command", "reboot_command"):
            value = getattr(self, name)
            if value is None and name == "initramfs_command":
                continue
            if not isinstance(value, list) or not value or not all(isinstance(part, str) for part in value):
                raise InvalidConfigError(name, value, "expected a non-empty list of strings")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = str(value) if isinstance(value, Path) else value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ToggleSettings":
        """Create settings from a dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                raise InvalidConfigError(key, data[key], "unknown setting")

        values = dict(data)
        for key in _PATH_FIELDS:
            if values.get(key) is not None:
                values[key] = Path(values[key])
        if "vendor_id" in values:
            values["vendor_id"] = str(values["vendor_id"]).lower()

        settings = cls(**values)
        settings.validate()
        return settings

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "ToggleSettings":
        """
        Load settings from a JSON file.

        An explicitly given path must exist; the default path is optional.
        """
        explicit = path is not None or bool(os.environ.get(CONFIG_ENV_VAR))
        path = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)

        if not path.exists():
            if explicit:
                raise InvalidConfigError("config", str(path), "file does not exist")
            logger.debug(f"No settings file at {path}, using defaults")
            return cls()

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidConfigError("config", str(path), f"not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise InvalidConfigError("config", str(path), "expected a JSON object")

        logger.debug(f"Loaded settings from {path}")
        return cls.from_dict(data)
