"""
PCI hostdev descriptors.

A hostdev hands a physical PCI function to the guest. The GPU also exposes
its option ROM (``<rom bar='on'/>``) so the guest firmware can initialise
it; the audio function does not need one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from common.exceptions import SwitchError
from hardware_detect.pci_address import PCIAddress
from vm_manager.templates.loader import TemplateLoader, get_template_loader

HOSTDEV_TEMPLATE = "hostdev.xml.j2"


@dataclass(frozen=True)
class HostdevDescriptor:
    """One ``<hostdev type='pci'>`` element."""
    address: PCIAddress
    rom_bar: bool = False
    role: str = "GPU"

    def to_xml(self, loader: Optional[TemplateLoader] = None) -> str:
        loader = loader or get_template_loader()
        xml = loader.render(
            HOSTDEV_TEMPLATE,
            address=self.address.libvirt_attrs(),
            rom_bar=self.rom_bar,
        )
        if xml is None:
            raise SwitchError(
                f"Device template {HOSTDEV_TEMPLATE} is missing",
                code="TEMPLATE_NOT_FOUND",
                recoverable=False,
                remedy="Reinstall vfio-switch",
            )
        return xml

    def describe(self) -> str:
        rom = " (ROM BAR on)" if self.rom_bar else ""
        return f"{self.role} {self.address}{rom}"


def gpu_hostdev(address: PCIAddress) -> HostdevDescriptor:
    return HostdevDescriptor(address, rom_bar=True, role="GPU")


def audio_hostdev(address: PCIAddress) -> HostdevDescriptor:
    return HostdevDescriptor(address, rom_bar=False, role="Audio")
