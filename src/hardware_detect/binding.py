"""
Binding State Detector

Reports which kernel driver is bound to a PCI function right now, as seen
by ``lspci -k``. This is the only source of truth for the live (committed)
state; persisted configuration only describes the next boot.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from common.exceptions import DependencyError

from .pci_address import PCIAddress

logger = logging.getLogger(__name__)

PASSTHROUGH_DRIVER = "vfio-pci"
DRIVER_IN_USE_FIELD = "Kernel driver in use:"


class BindingState(Enum):
    """What currently owns a PCI function."""
    HOST_DRIVER = "host-driver"
    PASSTHROUGH = "pass-through"
    NONE = "none"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Binding:
    """Live binding of one PCI function."""
    address: PCIAddress
    state: BindingState
    driver: Optional[str] = None

    @property
    def is_passthrough(self) -> bool:
        return self.state is BindingState.PASSTHROUGH

    def describe(self) -> str:
        if self.state is BindingState.HOST_DRIVER:
            return f"host ({self.driver})"
        if self.state is BindingState.PASSTHROUGH:
            return f"pass-through ({self.driver})"
        return self.state.value


def parse_driver_in_use(output: str) -> Optional[str]:
    """Extract the driver name from ``lspci -k`` output."""
    for line in output.splitlines():
        line = line.strip()
        if line.startswith(DRIVER_IN_USE_FIELD):
            driver = line[len(DRIVER_IN_USE_FIELD):].strip()
            return driver or None
    return None


class BindingDetector:
    """Queries lspci for the driver in use by a PCI function."""

    def __init__(self, passthrough_driver: str = PASSTHROUGH_DRIVER):
        self.passthrough_driver = passthrough_driver

    def _lspci(self, address: PCIAddress) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["lspci", "-k", "-s", address.short],
                capture_output=True, text=True, timeout=10
            )
        except FileNotFoundError as e:
            raise DependencyError("lspci", package="pciutils") from e

    def current_driver(self, address: PCIAddress) -> Optional[str]:
        """
        Get the kernel driver bound to a PCI function.

        Args:
            address: PCI address to query

        Returns:
            Driver name, or None if nothing is bound or the device does not exist.
        """
        result = self._lspci(address)
        if result.returncode != 0:
            logger.debug(f"lspci -s {address.short} exited {result.returncode}: {result.stderr.strip()}")
            return None
        return parse_driver_in_use(result.stdout)

    def binding(self, address: PCIAddress) -> Binding:
        """Classify the live binding of a PCI function."""
        result = self._lspci(address)
        if result.returncode != 0:
            logger.warning(f"Could not query {address}: {result.stderr.strip() or 'lspci failed'}")
            return Binding(address, BindingState.UNKNOWN)

        driver = parse_driver_in_use(result.stdout)
        if driver is None:
            return Binding(address, BindingState.NONE)
        if driver == self.passthrough_driver:
            return Binding(address, BindingState.PASSTHROUGH, driver)
        return Binding(address, BindingState.HOST_DRIVER, driver)

    def is_passthrough(self, address: PCIAddress) -> bool:
        """True if the function is bound to the pass-through driver now."""
        return self.current_driver(address) == self.passthrough_driver
