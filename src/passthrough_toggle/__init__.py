"""
vfio-switch Passthrough Toggle

Moves a GPU between the host driver and vfio-pci by rewriting boot-time
configuration: the global modprobe.d switch or the per-device binding list.
"""

from .settings import ToggleSettings
from .modprobe_config import GlobalStatus, ModprobeDocument
from .scope import PassthroughMode, Scope, ToggleOutcome, ToggleResult
from .boot_image import BootImage, RebootScheduler
from .global_scope import GlobalScopeController
from .device_list import DeviceListController, DeviceListStore
from .orchestrator import AutoToggle, ToggleDecision

__all__ = [
    "ToggleSettings",
    "GlobalStatus",
    "ModprobeDocument",
    "PassthroughMode",
    "Scope",
    "ToggleOutcome",
    "ToggleResult",
    "BootImage",
    "RebootScheduler",
    "GlobalScopeController",
    "DeviceListController",
    "DeviceListStore",
    "AutoToggle",
    "ToggleDecision",
]

__version__ = "0.1.0"
