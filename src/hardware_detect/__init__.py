"""vfio-switch Hardware Detection Module.

This module provides:
- PCI Bus-Device-Function address parsing and normalisation
- Live driver binding detection via lspci
- PCI enumeration of display and audio functions
"""

from .pci_address import PCIAddress, parse, normalize
from .binding import Binding, BindingDetector, BindingState, PASSTHROUGH_DRIVER
from .pci_scanner import PCIDevice, PCIScanner

__all__ = [
    # Addresses
    "PCIAddress",
    "parse",
    "normalize",
    # Binding state
    "Binding",
    "BindingDetector",
    "BindingState",
    "PASSTHROUGH_DRIVER",
    # Enumeration
    "PCIDevice",
    "PCIScanner",
]

__version__ = "0.1.0"
