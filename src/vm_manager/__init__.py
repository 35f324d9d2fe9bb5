"""
vfio-switch VM Manager

Adds pass-through bound PCI devices to libvirt VM definitions.
"""

from .core.connection import ConnectionScope, LibvirtConnection
from .core.vm_state import VMState
from .passthrough.gpu_attach import AttachReport, GPUAttacher
from .passthrough.hostdev import HostdevDescriptor

__all__ = [
    "ConnectionScope",
    "LibvirtConnection",
    "VMState",
    "AttachReport",
    "GPUAttacher",
    "HostdevDescriptor",
]
