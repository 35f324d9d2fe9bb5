"""
Auto-Toggle Orchestrator

Infers which way to flip the GPU from the current configuration:

1. If the device list is non-empty it wins. Its first entry is the
   representative device: bound to vfio-pci now means drive to the host,
   anything else means drive to the VM.
2. Otherwise the global switch decides: enabled goes to disabled and vice
   versa. Not configured and unknown are fatal and change nothing.

Persisted configuration describes the state after the next boot, the
binding detector what holds now. They are reported separately and may
legitimately differ until a reboot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from common.exceptions import NotConfiguredError, UnknownStateError
from common.prompts import ConfirmFn
from hardware_detect.binding import BindingDetector, BindingState
from hardware_detect.pci_address import PCIAddress
from hardware_detect.pci_scanner import PCIScanner

from .boot_image import BootImage, RebootScheduler
from .device_list import DeviceListController, mode_of
from .global_scope import GlobalScopeController
from .modprobe_config import GlobalStatus
from .scope import PassthroughMode, Scope, ScopeController, ToggleResult
from .settings import ToggleSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToggleDecision:
    """What ``auto`` is going to do, and why."""
    scope: Scope
    direction: PassthroughMode
    reason: str
    representative: Optional[PCIAddress] = None
    driver: Optional[str] = None

    @property
    def action(self) -> str:
        return "disable" if self.direction is PassthroughMode.HOST else "enable"


class AutoToggle:
    """Picks a scope and direction, then runs the matching controller."""

    def __init__(
        self,
        settings: Optional[ToggleSettings] = None,
        detector: Optional[BindingDetector] = None,
        scanner: Optional[PCIScanner] = None,
        boot: Optional[BootImage] = None,
        reboot: Optional[RebootScheduler] = None,
        confirm: Optional[ConfirmFn] = None,
        offer_reboot: bool = True,
    ):
        self.settings = settings or ToggleSettings()
        self.detector = detector or BindingDetector(self.settings.passthrough_driver)
        self.scanner = scanner or PCIScanner()

        shared = dict(
            settings=self.settings,
            boot=boot,
            reboot=reboot,
            confirm=confirm,
            offer_reboot=offer_reboot,
        )
        self.global_scope = GlobalScopeController(**shared)
        self.device_list = DeviceListController(detector=self.detector, **shared)

    def decide(self) -> ToggleDecision:
        """
        Work out the scope and direction without touching anything.

        Raises:
            NotConfiguredError: No device list and no global config file
            UnknownStateError: No device list and the global config is unrecognised
            InvalidFormatError: The device list holds a malformed entry
        """
        addresses = self.device_list.addresses()
        if addresses:
            representative = addresses[0]
            driver = self.detector.current_driver(representative)
            if driver == self.settings.passthrough_driver:
                direction = PassthroughMode.HOST
                reason = f"{representative} is bound to {driver}; returning listed devices to the host"
            else:
                direction = PassthroughMode.VM
                reason = f"{representative} is bound to {driver or 'no driver'}; passing listed devices to the VM"
            return ToggleDecision(Scope.DEVICE_LIST, direction, reason, representative, driver)

        document = self.global_scope.read()
        if document is None:
            raise NotConfiguredError(str(self.global_scope.path), self.settings.setup_command)

        status = document.status()
        if status is GlobalStatus.ENABLED:
            return ToggleDecision(Scope.GLOBAL, PassthroughMode.HOST, "global passthrough is enabled; disabling")
        if status is GlobalStatus.DISABLED:
            return ToggleDecision(Scope.GLOBAL, PassthroughMode.VM, "global passthrough is disabled; enabling")

        raise UnknownStateError(str(self.global_scope.path), self.global_scope.unknown_reason(document))

    def controller_for(self, scope: Scope) -> ScopeController:
        if scope is Scope.DEVICE_LIST:
            return self.device_list
        return self.global_scope

    def run(self) -> ToggleResult:
        """Decide, then enable or disable through the chosen controller."""
        decision = self.decide()
        logger.info(f"auto: {decision.scope.value} scope, {decision.action} ({decision.reason})")
        print(f"Auto-toggle: {decision.reason}")
        print()

        controller = self.controller_for(decision.scope)
        if decision.direction is PassthroughMode.HOST:
            return controller.disable()
        return controller.enable()

    def desired_state(self) -> PassthroughMode:
        """Who owns the GPU after the next boot, per persisted configuration."""
        if self.device_list.is_active():
            return self.device_list.desired_state()
        return self.global_scope.desired_state()

    def actual_state(self) -> PassthroughMode:
        """Who owns the GPU right now, per the kernel."""
        if self.device_list.is_active():
            return self.device_list.actual_state()

        bindings = [
            self.detector.binding(device.address)
            for device in self.scanner.display_devices(self.settings.vendor_id)
        ]
        if any(b.state is BindingState.PASSTHROUGH for b in bindings):
            return PassthroughMode.VM

        known = [b for b in bindings if b.state is not BindingState.UNKNOWN]
        if not known:
            return PassthroughMode.UNKNOWN
        return mode_of(known[0])

    def reboot_pending(self) -> bool:
        """True when a configuration change has not taken effect yet."""
        desired = self.desired_state()
        actual = self.actual_state()
        if PassthroughMode.UNKNOWN in (desired, actual):
            return False
        return desired is not actual
