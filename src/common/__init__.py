"""
vfio-switch Common Utilities

Shared error types, logging setup and prompt policies.
"""

from .exceptions import (
    SwitchError, InvalidFormatError, NotConfiguredError, UnknownStateError,
    EmptyListError, ConcurrentModificationError, InvalidConfigError,
    BootImageRefreshError, DependencyError, PrivilegeError, VMError,
    VMNotFoundError, VMRunningError, VMStateError, PermissionWarningDeclined,
    HardwareError, NoPassthroughDeviceError, AmbiguousCompanionError,
    HypervisorError, LibvirtCallError, LibvirtConnectionError,
)
from .decorators import require_root, timed
from .logging_config import setup_logging, LogContext
from .prompts import InteractiveConfirm, AlwaysYes, AlwaysNo, ScriptedConfirm

__all__ = [
    # Exceptions
    "SwitchError", "InvalidFormatError", "NotConfiguredError", "UnknownStateError",
    "EmptyListError", "ConcurrentModificationError", "InvalidConfigError",
    "BootImageRefreshError", "DependencyError", "PrivilegeError", "VMError",
    "VMNotFoundError", "VMRunningError", "VMStateError", "PermissionWarningDeclined",
    "HardwareError", "NoPassthroughDeviceError", "AmbiguousCompanionError",
    "HypervisorError", "LibvirtCallError", "LibvirtConnectionError",
    # Decorators
    "require_root", "timed",
    # Logging
    "setup_logging", "LogContext",
    # Prompts
    "InteractiveConfirm", "AlwaysYes", "AlwaysNo", "ScriptedConfirm",
]
