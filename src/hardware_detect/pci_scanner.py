#!/usr/bin/env python3
"""
vfio-switch Hardware Detection - PCI Scanner Module

Enumerates PCI functions with ``lspci -Dnn`` and picks out the display and
audio functions of a vendor, which is all the attach flow needs to find a
pass-through GPU and its HDMI audio companion.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from common.exceptions import DependencyError, InvalidFormatError

from .pci_address import PCIAddress

logger = logging.getLogger(__name__)

LSPCI_LINE = re.compile(
    r"^(?P<address>[0-9a-fA-F:.]+)\s+(?P<class_name>.*?)\s*"
    r"\[(?P<class_code>[0-9a-fA-F]{4})\]:\s*(?P<rest>.*)$"
)
VENDOR_DEVICE = re.compile(r"\[([0-9a-fA-F]{4}):([0-9a-fA-F]{4})\]")


@dataclass
class PCIDevice:
    """Represents one PCI function from lspci."""

    address: PCIAddress        # e.g., 0000:01:00.0
    class_code: str            # e.g., "0300"
    class_name: str            # e.g., "VGA compatible controller"
    vendor_id: str             # e.g., "10de"
    device_id: str             # e.g., "2484"
    description: str = ""      # e.g., "NVIDIA Corporation GA104 [GeForce RTX 3070]"

    @property
    def is_display(self) -> bool:
        """VGA, XGA and 3D controllers (PCI class 03xx)."""
        return self.class_code.startswith("03")

    @property
    def is_audio(self) -> bool:
        """HD audio functions (PCI class 0403)."""
        return self.class_code == "0403" or "audio" in self.class_name.lower()

    @property
    def vfio_ids(self) -> str:
        """Return the vendor:device ID string."""
        return f"{self.vendor_id}:{self.device_id}"


def parse_lspci_line(line: str) -> Optional[PCIDevice]:
    """
    Parse one line of ``lspci -Dnn`` output.

    Example:
        0000:01:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA104 [GeForce RTX 3070] [10de:2484] (rev a1)
    """
    match = LSPCI_LINE.match(line.strip())
    if not match:
        return None

    rest = match.group("rest")
    ids = list(VENDOR_DEVICE.finditer(rest))
    if not ids:
        return None
    last = ids[-1]

    try:
        address = PCIAddress.parse(match.group("address"))
    except InvalidFormatError:
        # Non-default PCI domains are not handled
        logger.debug(f"Skipping device outside domain 0000: {match.group('address')}")
        return None

    return PCIDevice(
        address=address,
        class_code=match.group("class_code").lower(),
        class_name=match.group("class_name").strip(),
        vendor_id=last.group(1).lower(),
        device_id=last.group(2).lower(),
        description=rest[:last.start()].strip(),
    )


class PCIScanner:
    """Scans the system for PCI functions."""

    def __init__(self):
        self.devices: List[PCIDevice] = []

    def _run_lspci(self, *extra: str) -> str:
        try:
            result = subprocess.run(
                ["lspci", "-Dnn", *extra],
                capture_output=True, text=True, timeout=10
            )
        except FileNotFoundError as e:
            raise DependencyError("lspci", package="pciutils") from e

        if result.returncode != 0:
            logger.warning(f"lspci exited {result.returncode}: {result.stderr.strip()}")
            return ""
        return result.stdout

    def scan(self) -> List[PCIDevice]:
        """Scan all PCI functions."""
        self.devices = []
        for line in self._run_lspci().splitlines():
            device = parse_lspci_line(line)
            if device:
                self.devices.append(device)

        self.devices.sort(key=lambda d: d.address)
        return self.devices

    def describe(self, address: PCIAddress) -> Optional[PCIDevice]:
        """Look up a single function, or None if it does not exist."""
        for line in self._run_lspci("-s", address.short).splitlines():
            device = parse_lspci_line(line)
            if device and device.address == address:
                return device
        return None

    def display_devices(self, vendor_id: str) -> List[PCIDevice]:
        """Display-class functions of a vendor, in address order."""
        return [
            d for d in self._devices()
            if d.vendor_id == vendor_id.lower() and d.is_display
        ]

    def audio_devices(self, vendor_id: str) -> List[PCIDevice]:
        """Audio-class functions of a vendor, in address order."""
        return [
            d for d in self._devices()
            if d.vendor_id == vendor_id.lower() and d.is_audio
        ]

    def _devices(self) -> List[PCIDevice]:
        if not self.devices:
            self.scan()
        return self.devices
