"""
Boot image refresh and reboot.

Driver binding changes only take effect once the initramfs has been
regenerated and the machine rebooted. The refresh always runs; the reboot
is offered and only happens on a yes.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from typing import Callable, List, Optional

from common.decorators import timed
from common.exceptions import BootImageRefreshError, DependencyError, SwitchError
from common.prompts import ConfirmFn

from .settings import ToggleSettings

logger = logging.getLogger(__name__)

# Tried in order when no command is configured
INITRAMFS_GENERATORS = [
    ["update-initramfs", "-u"],
    ["dracut", "--force"],
    ["mkinitcpio", "-P"],
]


class BootImage:
    """Regenerates the early-boot image so modprobe.d changes apply at boot."""

    def __init__(self, settings: ToggleSettings):
        self.settings = settings

    def command(self) -> List[str]:
        """The configured generator, or the first one installed."""
        if self.settings.initramfs_command:
            return list(self.settings.initramfs_command)

        for candidate in INITRAMFS_GENERATORS:
            if shutil.which(candidate[0]):
                return list(candidate)

        raise DependencyError(
            "initramfs generator (update-initramfs, dracut or mkinitcpio)",
            package="initramfs-tools",
        )

    @timed
    def refresh(self) -> None:
        """
        Regenerate the initramfs.

        Raises:
            BootImageRefreshError: If the generator exits non-zero
            DependencyError: If the generator is not installed
        """
        cmd = self.command()
        cmd_str = " ".join(cmd)
        print(f"Updating initramfs ({cmd_str})...")
        logger.info(f"Running {cmd_str}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise DependencyError(cmd[0]) from e

        if result.stdout:
            logger.debug(result.stdout.strip())

        if result.returncode != 0:
            reason = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else f"exit code {result.returncode}"
            raise BootImageRefreshError(cmd_str, reason)

        print("✓ Initramfs updated")


class RebootScheduler:
    """Offers an immediate reboot after a binding change."""

    def __init__(
        self,
        settings: ToggleSettings,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.settings = settings
        self._sleep = sleep or time.sleep

    def offer(self, confirm: ConfirmFn) -> bool:
        """
        Ask whether to reboot now and do so on a yes.

        Returns:
            True if a reboot was started
        """
        print()
        print("IMPORTANT: Reboot required for changes to take effect")

        if not confirm("Do you want to reboot now?"):
            print("Please reboot manually when ready: sudo reboot")
            return False

        delay = self.settings.reboot_delay
        if delay:
            print(f"Rebooting in {delay} seconds... (Ctrl+C to cancel)")
            self._sleep(delay)

        cmd = self.settings.reboot_command
        logger.info(f"Running {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise DependencyError(cmd[0]) from e

        if result.returncode != 0:
            raise SwitchError(
                f"Reboot command failed: {result.stderr.strip() or result.returncode}",
                code="REBOOT_FAILED",
                remedy="Reboot manually: sudo reboot",
            )
        return True
