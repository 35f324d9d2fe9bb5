"""
Device List Scope Controller

Per-device passthrough: an initramfs hook binds every address listed in
``/etc/vfio-bind.list`` to vfio-pci at boot. An empty or missing list means
this scope is inactive.

The list is always replaced atomically, so an interrupted write never
leaves a torn file behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

from common.exceptions import EmptyListError, InvalidFormatError
from hardware_detect.binding import Binding, BindingDetector, BindingState
from hardware_detect.pci_address import PCIAddress
from utils.atomic_write import atomic_write_text, timestamped_backup

from .scope import PassthroughMode, Scope, ScopeController, ToggleOutcome, ToggleResult

logger = logging.getLogger(__name__)

LIST_HEADER = (
    "# vfio-bind list\n"
    "# One BDF per line; optional comments allowed\n"
)

AddressLike = Union[PCIAddress, str]


class DeviceListStore:
    """Reads and writes the per-device binding list."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def has_content(self) -> bool:
        """True if the file exists and is not empty (comments count)."""
        return self.path.exists() and self.path.stat().st_size > 0

    def read(self) -> List[PCIAddress]:
        """
        Read the listed addresses in file order.

        Blank lines and ``#`` comments are skipped.

        Raises:
            InvalidFormatError: If a line is not a valid address or the
                file is not UTF-8 text
        """
        if not self.path.exists():
            return []

        try:
            text = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise InvalidFormatError(f"undecodable byte at offset {e.start}", source=str(self.path)) from e

        addresses = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            entry = line.strip()
            if not entry or entry.startswith("#"):
                continue
            addresses.append(PCIAddress.parse(entry, source=f"{self.path}:{lineno}"))
        return addresses

    def is_active(self) -> bool:
        return bool(self.read())

    def write(self, addresses: List[PCIAddress]) -> None:
        """Replace the list with the given addresses."""
        body = "".join(f"{address}\n" for address in addresses)
        atomic_write_text(self.path, LIST_HEADER + body)

    def truncate(self) -> None:
        """Empty the list."""
        atomic_write_text(self.path, "")


class DeviceListController(ScopeController):
    """Manages passthrough for an explicit, ordered set of PCI functions."""

    scope = Scope.DEVICE_LIST

    def __init__(self, *args, detector: Optional[BindingDetector] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.store = DeviceListStore(self.settings.bind_list)
        self.detector = detector or BindingDetector(self.settings.passthrough_driver)

    @property
    def path(self) -> Path:
        return self.store.path

    def addresses(self) -> List[PCIAddress]:
        return self.store.read()

    def is_active(self) -> bool:
        return self.store.is_active()

    def set(self, primary: AddressLike, companion: Optional[AddressLike] = None) -> List[PCIAddress]:
        """
        Save the GPU (and optional audio function) to bind at boot.

        Both addresses are validated before anything is written. A non-empty
        previous list is backed up first.

        Returns:
            The saved addresses, in order
        """
        addresses = [self._coerce(primary, "GPU")]
        if companion is not None:
            addresses.append(self._coerce(companion, "audio"))

        if self.store.has_content():
            backup = timestamped_backup(self.path)
            print(f"Created backup: {backup}")

        self.store.write(addresses)
        logger.info(f"Saved binding list {self.path}: {', '.join(str(a) for a in addresses)}")

        print(f"Saved per-PCI binding list to: {self.path}")
        print(self.path.read_text(encoding="utf-8"), end="")
        print()
        print("Run: sudo vfio-toggle single enable && sudo reboot  to activate binding")
        return addresses

    def enable(self) -> ToggleResult:
        """
        Activate binding of the listed devices at next boot.

        Raises:
            EmptyListError: If no address is listed (nothing is changed)
        """
        if not self.store.read():
            raise EmptyListError(str(self.path))

        print("Enabling per-PCI binding via initramfs hook...")
        rebooting = self._commit_to_next_boot()
        return ToggleResult(ToggleOutcome.APPLIED, self.scope, PassthroughMode.VM, rebooting=rebooting)

    def disable(self) -> ToggleResult:
        """Back up and empty the list so the host driver binds at next boot."""
        backup = None
        if self.store.exists():
            backup = timestamped_backup(self.path)
            self.store.truncate()
            print(f"Created backup: {backup}")

        print("Disabling per-PCI binding (empty list)...")
        rebooting = self._commit_to_next_boot()
        return ToggleResult(
            ToggleOutcome.APPLIED, self.scope, PassthroughMode.HOST,
            backup=backup, rebooting=rebooting,
        )

    def status(self) -> List[Binding]:
        """Live binding of each listed device. Never modifies anything."""
        return [self.detector.binding(address) for address in self.store.read()]

    def desired_state(self) -> PassthroughMode:
        """VM after the next boot if anything is listed, else host."""
        return PassthroughMode.VM if self.is_active() else PassthroughMode.HOST

    def actual_state(self) -> PassthroughMode:
        """Live owner of the first listed device."""
        addresses = self.store.read()
        if not addresses:
            return PassthroughMode.UNKNOWN
        return mode_of(self.detector.binding(addresses[0]))

    def _coerce(self, value: AddressLike, role: str) -> PCIAddress:
        if isinstance(value, PCIAddress):
            return value
        return PCIAddress.parse(value, source=f"{role} address")


def mode_of(binding: Binding) -> PassthroughMode:
    """Map a live binding to the side that owns the device."""
    if binding.state is BindingState.PASSTHROUGH:
        return PassthroughMode.VM
    if binding.state in (BindingState.HOST_DRIVER, BindingState.NONE):
        return PassthroughMode.HOST
    return PassthroughMode.UNKNOWN
