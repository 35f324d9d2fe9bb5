"""
Shared types for the two binding scopes.

A scope controller rewrites persistent configuration that only takes effect
at the next boot, so every successful change ends the same way: refresh the
boot image, then offer a reboot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from common.prompts import AlwaysNo, ConfirmFn

from .boot_image import BootImage, RebootScheduler
from .settings import ToggleSettings


class Scope(Enum):
    """Which configuration artifact drives the binding."""
    GLOBAL = "global"
    DEVICE_LIST = "device-list"


class PassthroughMode(Enum):
    """Which side owns the GPU."""
    HOST = "host"
    VM = "vm"
    UNKNOWN = "unknown"


class ToggleOutcome(Enum):
    """Result of an enable/disable request."""
    APPLIED = "applied"
    ALREADY_IN_STATE = "already_in_state"


@dataclass
class ToggleResult:
    """What an enable/disable call did."""
    outcome: ToggleOutcome
    scope: Scope
    target: PassthroughMode
    backup: Optional[Path] = None
    changed_lines: List[int] = field(default_factory=list)
    rebooting: bool = False

    @property
    def changed(self) -> bool:
        return self.outcome is ToggleOutcome.APPLIED


class ScopeController:
    """Base for the global and device-list controllers."""

    scope: Scope

    def __init__(
        self,
        settings: Optional[ToggleSettings] = None,
        boot: Optional[BootImage] = None,
        reboot: Optional[RebootScheduler] = None,
        confirm: Optional[ConfirmFn] = None,
        offer_reboot: bool = True,
    ):
        self.settings = settings or ToggleSettings()
        self.boot = boot or BootImage(self.settings)
        self.reboot = reboot or RebootScheduler(self.settings)
        self.confirm = confirm or AlwaysNo()
        self.offer_reboot = offer_reboot

    def _commit_to_next_boot(self) -> bool:
        """Refresh the boot image and offer a reboot. Returns True if rebooting."""
        self.boot.refresh()
        if not self.offer_reboot:
            print("Reboot required for changes to take effect: sudo reboot")
            return False
        return self.reboot.offer(self.confirm)
