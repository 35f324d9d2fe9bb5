"""
Global Scope Controller

Switches family-wide passthrough on and off by commenting or uncommenting
the ``softdep ... pre: vfio-pci`` lines of the modprobe.d file written by
the initial setup. The ``options vfio-pci ids=`` line is forced commented
on every change so the switch never captures every card of the vendor.

State machine::

    not_configured --enable/disable--> NotConfiguredError
    unknown        --enable/disable--> UnknownStateError
    enabled  --disable--> disabled
    disabled --enable-->  enabled
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from common.exceptions import (
    ConcurrentModificationError,
    NotConfiguredError,
    UnknownStateError,
)
from utils.atomic_write import atomic_write_text, timestamped_backup

from .modprobe_config import GlobalStatus, ModprobeDocument
from .scope import PassthroughMode, Scope, ScopeController, ToggleOutcome, ToggleResult

logger = logging.getLogger(__name__)


class GlobalScopeController(ScopeController):
    """Enable/disable passthrough through the modprobe.d claim directive."""

    scope = Scope.GLOBAL

    @property
    def path(self) -> Path:
        return self.settings.modprobe_conf

    def read(self) -> Optional[ModprobeDocument]:
        """Parse the modprobe file, or None if it does not exist."""
        if not self.path.exists():
            return None
        return ModprobeDocument(self._read_text(), self.settings.passthrough_driver)

    def status(self) -> GlobalStatus:
        """Current status of the switch. Never modifies anything."""
        try:
            document = self.read()
        except UnknownStateError:
            return GlobalStatus.UNKNOWN
        if document is None:
            return GlobalStatus.NOT_CONFIGURED
        return document.status()

    def desired_state(self) -> PassthroughMode:
        """Who will own the GPU after the next boot, per this file."""
        return {
            GlobalStatus.ENABLED: PassthroughMode.VM,
            GlobalStatus.DISABLED: PassthroughMode.HOST,
            GlobalStatus.NOT_CONFIGURED: PassthroughMode.HOST,
            GlobalStatus.UNKNOWN: PassthroughMode.UNKNOWN,
        }[self.status()]

    def enable(self) -> ToggleResult:
        """Uncomment the claim directive so vfio-pci takes the GPU at boot."""
        return self._switch(active=True)

    def disable(self) -> ToggleResult:
        """Comment out the claim directive so the native driver takes the GPU at boot."""
        return self._switch(active=False)

    def _switch(self, active: bool) -> ToggleResult:
        word = "enable" if active else "disable"
        target_status = GlobalStatus.ENABLED if active else GlobalStatus.DISABLED
        target_mode = PassthroughMode.VM if active else PassthroughMode.HOST

        document = self.read()
        if document is None:
            raise NotConfiguredError(str(self.path), self.settings.setup_command)

        status = document.status()
        if status is GlobalStatus.UNKNOWN:
            raise UnknownStateError(str(self.path), self.unknown_reason(document))

        if status is target_status:
            if document.is_active("id_list"):
                logger.warning(f"{self.path} has an active 'options {self.settings.passthrough_driver} ids=' line")
            print(f"GPU passthrough is already {target_status.value}!")
            print("No changes needed.")
            return ToggleResult(ToggleOutcome.ALREADY_IN_STATE, self.scope, target_mode)

        print(f"=== {'Enabling' if active else 'Disabling'} GPU Passthrough ===")
        print()

        updated, changed = document.with_claim(active)

        backup = timestamped_backup(self.path)
        print(f"Created backup: {backup}")

        self._write(updated, expected_version=document.version)
        logger.info(f"{word}d claim directive in {self.path}, lines {changed}")
        print(f"✓ {'Uncommented' if active else 'Commented out'} VFIO configuration")
        print()

        rebooting = self._commit_to_next_boot()

        return ToggleResult(
            ToggleOutcome.APPLIED,
            self.scope,
            target_mode,
            backup=backup,
            changed_lines=changed,
            rebooting=rebooting,
        )

    def _write(self, document: ModprobeDocument, expected_version: str) -> None:
        current = ModprobeDocument(self._read_text(), self.settings.passthrough_driver).version
        if current != expected_version:
            raise ConcurrentModificationError(str(self.path))
        atomic_write_text(self.path, document.text)

    def _read_text(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise UnknownStateError(str(self.path), "not valid UTF-8 text") from e

    def unknown_reason(self, document: ModprobeDocument) -> str:
        """Why a document could not be classified."""
        driver = self.settings.passthrough_driver
        if not document.field_lines("claim"):
            return f"no 'softdep <module> pre: {driver}' line found"
        return "some softdep lines are commented out and some are not"
