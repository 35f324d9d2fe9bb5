"""
VM Manager Core - libvirt access and VM states.
"""

from .connection import ConnectionScope, LibvirtConnection
from .vm_state import VMState

__all__ = ["ConnectionScope", "LibvirtConnection", "VMState"]
