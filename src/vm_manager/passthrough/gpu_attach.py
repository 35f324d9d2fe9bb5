"""
GPU Attacher - adds a vfio-pci bound GPU to a libvirt VM definition.

Flow:
1. Resolve the VM on the chosen connection
2. Find the first vendor GPU bound to vfio-pci, and its audio function
3. On session connections, check group membership, device ownership and
   the memlock limit, and ask before continuing past any problem
4. Shut the VM down if it is running (the definition is edited offline)
5. Back up the full definition, the only rollback path
6. Add a hostdev per device to the persistent definition
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from common.exceptions import (
    AmbiguousCompanionError,
    HypervisorError,
    NoPassthroughDeviceError,
    PermissionWarningDeclined,
    VMNotFoundError,
    VMRunningError,
    VMStateError,
)
from common.logging_config import LogContext
from common.prompts import AlwaysNo, ConfirmFn
from hardware_detect.binding import BindingDetector
from hardware_detect.pci_address import PCIAddress
from hardware_detect.pci_scanner import PCIScanner
from passthrough_toggle.settings import ToggleSettings
from utils.atomic_write import atomic_write_text, backup_name

from ..core.connection import ConnectionScope, LibvirtConnection
from ..core.vm_state import VMState
from .hostdev import HostdevDescriptor, audio_hostdev, gpu_hostdev
from .requirements import PermissionWarning, check_session_requirements

logger = logging.getLogger(__name__)

SHUTDOWN_POLL_INTERVAL = 1.0


@dataclass
class AttachReport:
    """What an attach run did."""
    vm_name: str
    uri: str
    gpu: Optional[PCIAddress] = None
    audio: Optional[PCIAddress] = None
    backup: Optional[Path] = None
    attached: List[PCIAddress] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    warnings: List[PermissionWarning] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.cancelled and self.gpu is not None and self.gpu in self.attached

    @property
    def restore_hint(self) -> Optional[str]:
        if self.backup is None:
            return None
        return f"virsh define {self.backup}"


class GPUAttacher:
    """
    Attaches a pass-through bound GPU (and its audio function) to a VM.

    Every question goes through ``confirm`` and every libvirt call through
    ``connection``, so the whole flow runs unattended in tests.
    """

    def __init__(
        self,
        connection: LibvirtConnection,
        scanner: Optional[PCIScanner] = None,
        detector: Optional[BindingDetector] = None,
        confirm: Optional[ConfirmFn] = None,
        settings: Optional[ToggleSettings] = None,
        check_requirements: Callable[[], List[PermissionWarning]] = check_session_requirements,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.connection = connection
        self.settings = settings or ToggleSettings()
        self.scanner = scanner or PCIScanner()
        self.detector = detector or BindingDetector(self.settings.passthrough_driver)
        self.confirm = confirm or AlwaysNo()
        self._check_requirements = check_requirements
        self._sleep = sleep
        self._clock = clock

    def attach(self, vm_name: str) -> AttachReport:
        """
        Add the GPU and its audio function to a VM's persistent definition.

        Raises:
            VMNotFoundError: The VM is not defined on this connection
            NoPassthroughDeviceError: No vendor GPU is bound to vfio-pci
            AmbiguousCompanionError: Several audio functions share the GPU slot
            PermissionWarningDeclined: Session checks failed and the operator stopped
            VMRunningError: The VM is running and the operator declined shutdown
            VMStateError: The VM is paused or did not shut down in time
            HypervisorError: Attaching the GPU failed
        """
        uri = self.connection.uri
        with LogContext(vm_name=vm_name, uri=uri):
            print(f"Using connection: {uri}")
            print()

            domain = self._resolve(vm_name)

            print(f"=== Add GPU to VM: {vm_name} ===")
            print()

            gpu = self.find_gpu()
            audio = self.find_companion(gpu)
            report = AttachReport(vm_name, uri, gpu=gpu, audio=audio)

            print("Found:")
            print(f"GPU: {gpu}")
            if audio:
                print(f"Audio: {audio}")
            print()

            if self.connection.scope is ConnectionScope.SESSION:
                report.warnings = self._check_session()

            self._ensure_shut_off(domain, vm_name)

            report.backup = self._backup(domain, vm_name)
            print(f"Backup saved: {report.backup}")
            print()

            descriptors = [gpu_hostdev(gpu)]
            if audio:
                descriptors.append(audio_hostdev(audio))

            if not self._confirm_descriptors(vm_name, descriptors):
                print("Aborted.")
                report.cancelled = True
                return report

            self._apply(domain, descriptors, report)

        logger.info(f"Attached {', '.join(str(a) for a in report.attached)} to {vm_name}")
        return report

    def find_gpu(self) -> PCIAddress:
        """First vendor display device currently bound to vfio-pci."""
        for device in self.scanner.display_devices(self.settings.vendor_id):
            if self.detector.is_passthrough(device.address):
                logger.debug(f"Selected GPU {device.address}: {device.description}")
                return device.address
        raise NoPassthroughDeviceError(self.settings.vendor_id, self.settings.passthrough_driver)

    def find_companion(self, gpu: PCIAddress) -> Optional[PCIAddress]:
        """
        The GPU's audio function, or None.

        Function .1 is tried first. Otherwise the vendor's audio functions in
        the same bus/slot are considered; more than one is ambiguous.
        """
        candidate = gpu.companion()
        if candidate != gpu:
            device = self.scanner.describe(candidate)
            if device is not None and device.is_audio:
                return candidate

        matches = [
            device.address
            for device in self.scanner.audio_devices(self.settings.vendor_id)
            if device.address.same_slot(gpu) and device.address != gpu
        ]
        if len(matches) > 1:
            raise AmbiguousCompanionError(str(gpu), [str(a) for a in matches])
        if not matches:
            logger.info(f"No audio function found next to {gpu}")
            return None
        return matches[0]

    def _resolve(self, vm_name: str):
        domain = self.connection.lookup(vm_name)
        if domain is None:
            raise VMNotFoundError(
                vm_name,
                self.connection.uri,
                available=self.connection.list_domain_names(),
            )
        return domain

    def _check_session(self) -> List[PermissionWarning]:
        print("=== Checking User Session VM Requirements ===")
        warnings = self._check_requirements()
        if not warnings:
            print("✓ Session requirements met")
            print()
            return warnings

        for warning in warnings:
            print(f"⚠ {warning.message}")
        print()
        print("To fix these issues, run:")
        for remedy in sorted({w.remedy for w in warnings}):
            print(f"  {remedy}")
        print("Then log out and log back in for changes to take effect.")
        print()

        if not self.confirm("Continue anyway?"):
            raise PermissionWarningDeclined(warnings)
        return warnings

    def _ensure_shut_off(self, domain, vm_name: str) -> None:
        state = self.connection.state(domain)
        if state.is_inactive:
            return
        if not state.is_running:
            raise VMStateError(vm_name, state.label, VMState.SHUTOFF.label)

        print("Warning: VM is currently running")
        print("The VM must be shut down to modify hardware configuration.")
        if not self.confirm("Shut down VM now?"):
            raise VMRunningError(vm_name)

        print("Shutting down VM...")
        self.connection.shutdown(domain)
        self._wait_for_shutoff(domain, vm_name)

    def _wait_for_shutoff(self, domain, vm_name: str) -> None:
        deadline = self._clock() + self.settings.shutdown_timeout
        while True:
            state = self.connection.state(domain)
            if state.is_shutoff:
                print("✓ VM shut down")
                return
            if self._clock() >= deadline:
                raise VMStateError(vm_name, state.label, VMState.SHUTOFF.label)
            self._sleep(SHUTDOWN_POLL_INTERVAL)

    def _backup(self, domain, vm_name: str) -> Path:
        directory = self.settings.backup_dir or Path.cwd()
        path = backup_name(Path(directory) / f"{vm_name}.xml")
        atomic_write_text(path, self.connection.dump_xml(domain))
        logger.info(f"Backed up definition of {vm_name} to {path}")
        return path

    def _confirm_descriptors(self, vm_name: str, descriptors: List[HostdevDescriptor]) -> bool:
        print("=== GPU Configuration to Add ===")
        for descriptor in descriptors:
            print(f"{descriptor.role} device:")
            print(descriptor.to_xml(), end="")
            print()
        print("==============================")
        return self.confirm(f"Add GPU passthrough to VM '{vm_name}'?")

    def _apply(self, domain, descriptors: List[HostdevDescriptor], report: AttachReport) -> None:
        gpu, extras = descriptors[0], descriptors[1:]

        print("Adding GPU to VM configuration...")
        try:
            self.connection.attach_to_config(domain, gpu.to_xml())
        except HypervisorError as e:
            if e.remedy is None:
                e.remedy = f"Restore the previous definition with: {report.restore_hint}"
            raise
        report.attached.append(gpu.address)
        print("✓ GPU added")

        for descriptor in extras:
            print(f"Adding {descriptor.role.lower()} device to VM configuration...")
            try:
                self.connection.attach_to_config(domain, descriptor.to_xml())
            except HypervisorError as e:
                logger.error(f"Failed to attach {descriptor.describe()}: {e}")
                report.failures[str(descriptor.address)] = str(e.cause or e.message)
                print(f"⚠ Could not add {descriptor.role.lower()} device {descriptor.address}: {e.message}")
                continue
            report.attached.append(descriptor.address)
            print(f"✓ {descriptor.role} added")
