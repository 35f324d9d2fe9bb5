"""
vfio-switch Exception Hierarchy

Provides clear, actionable error messages with structured information
for logging, user feedback, and programmatic error handling. Every fatal
condition names the remediating action in ``remedy``.
"""

from typing import Optional, Dict, Any


class SwitchError(Exception):
    """
    Base exception for all vfio-switch errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        cause: Original exception that caused this error
        recoverable: Whether the error is recoverable
        remedy: What the operator should do next
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True,
        remedy: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.remedy = remedy

    def __str__(self):
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause:
            s += f" caused by: {self.cause}"
        return s

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "remedy": self.remedy,
        }


# =============================================================================
# Address and configuration errors
# =============================================================================

class InvalidFormatError(SwitchError):
    """Malformed PCI address."""
    def __init__(self, text: str, source: Optional[str] = None):
        where = f" in {source}" if source else ""
        super().__init__(
            f"Invalid PCI address{where}: {text!r}",
            code="INVALID_FORMAT",
            details={"value": text, "source": source},
            recoverable=False,
            remedy="Use the bus:slot.function form, e.g. 03:00.0 or 0000:03:00.0",
        )


class NotConfiguredError(SwitchError):
    """Global passthrough configuration has never been created."""
    def __init__(self, path: str, setup_command: str):
        super().__init__(
            f"GPU passthrough not configured: {path} does not exist",
            code="NOT_CONFIGURED",
            details={"path": path},
            recoverable=False,
            remedy=f"Run the initial setup first: {setup_command}",
        )


class UnknownStateError(SwitchError):
    """Configuration file exists but its format is not recognised."""
    def __init__(self, path: str, reason: str = "format is unexpected"):
        super().__init__(
            f"Unknown VFIO configuration state in {path}: {reason}",
            code="UNKNOWN_STATE",
            details={"path": path, "reason": reason},
            recoverable=False,
            remedy=f"Inspect {path} by hand; no automatic change was made",
        )


class EmptyListError(SwitchError):
    """Per-device binding list has no entries."""
    def __init__(self, path: str):
        super().__init__(
            f"No PCI addresses configured in {path}",
            code="EMPTY_LIST",
            details={"path": path},
            remedy="Save target addresses first: vfio-toggle single set <GPU_BDF> [AUDIO_BDF]",
        )


class ConcurrentModificationError(SwitchError):
    """File changed between read and write."""
    def __init__(self, path: str):
        super().__init__(
            f"{path} was modified by another process while it was being edited",
            code="CONCURRENT_MODIFICATION",
            details={"path": path},
            remedy="Run the command again once no other toggle is running",
        )


class InvalidConfigError(SwitchError):
    """Invalid settings file."""
    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Invalid configuration: {field}={value}: {reason}",
            code="INVALID_CONFIG",
            details={"field": field, "value": str(value), "reason": reason},
            remedy="Fix or remove the offending key in the settings file",
        )


# =============================================================================
# System errors
# =============================================================================

class BootImageRefreshError(SwitchError):
    """Initramfs regeneration failed."""
    def __init__(self, command: str, reason: str):
        super().__init__(
            f"Boot image refresh failed ({command}): {reason}",
            code="BOOT_IMAGE_REFRESH_FAILED",
            details={"command": command, "reason": reason},
            remedy=f"Fix the error and run '{command}' by hand before rebooting",
        )


class DependencyError(SwitchError):
    """Missing dependency."""
    def __init__(self, dependency: str, package: Optional[str] = None):
        remedy = f"Install the '{package}' package" if package else None
        super().__init__(
            f"Missing dependency: {dependency}",
            code="MISSING_DEPENDENCY",
            details={"dependency": dependency, "package": package},
            remedy=remedy,
        )


class PrivilegeError(SwitchError):
    """Operation needs root."""
    def __init__(self, operation: str):
        super().__init__(
            f"{operation} requires root privileges",
            code="PERMISSION_DENIED",
            details={"operation": operation},
            remedy="Run the command again with sudo",
        )


# =============================================================================
# VM-related errors
# =============================================================================

class VMError(SwitchError):
    """Base for VM-related errors."""
    pass


class VMNotFoundError(VMError):
    """VM does not exist on the chosen connection."""
    def __init__(self, vm_name: str, uri: str, available: Optional[list] = None):
        available = available or []
        listing = ", ".join(available) if available else "none"
        super().__init__(
            f"Virtual machine '{vm_name}' not found on {uri}",
            code="VM_NOT_FOUND",
            details={"vm_name": vm_name, "uri": uri, "available": available},
            recoverable=False,
            remedy=f"Available VMs: {listing}",
        )


class VMRunningError(VMError):
    """VM is running and the operator declined to shut it down."""
    def __init__(self, vm_name: str):
        super().__init__(
            f"VM '{vm_name}' is running; hardware can only be added while it is shut off",
            code="VM_RUNNING",
            details={"vm_name": vm_name},
            remedy=f"Shut down the VM (virsh shutdown {vm_name}) and run this command again",
        )


class VMStateError(VMError):
    """Invalid VM state for operation."""
    def __init__(self, vm_name: str, current_state: str, required_state: str):
        super().__init__(
            f"VM '{vm_name}' is in state '{current_state}', requires '{required_state}'",
            code="VM_INVALID_STATE",
            details={
                "vm_name": vm_name,
                "current_state": current_state,
                "required_state": required_state,
            },
            remedy=f"Bring the VM to '{required_state}' and run this command again",
        )


class PermissionWarningDeclined(VMError):
    """Operator chose not to continue past session permission warnings."""
    def __init__(self, warnings: list):
        super().__init__(
            f"Aborted with {len(warnings)} unresolved permission issue(s)",
            code="PERMISSION_WARNINGS",
            details={"warnings": [w.check for w in warnings]},
            remedy="Run sudo ./fix-vfio-permissions.sh and sudo ./fix-memlock-limits.sh, then log in again",
        )


# =============================================================================
# Hardware-related errors
# =============================================================================

class HardwareError(SwitchError):
    """Base for hardware-related errors."""
    pass


class NoPassthroughDeviceError(HardwareError):
    """No display device of the vendor is bound to the pass-through driver."""
    def __init__(self, vendor_id: str, driver: str):
        super().__init__(
            f"No GPU from vendor {vendor_id} bound to {driver} found",
            code="NO_PASSTHROUGH_DEVICE",
            details={"vendor_id": vendor_id, "driver": driver},
            recoverable=False,
            remedy="Enable passthrough (vfio-toggle single enable) and reboot, then try again",
        )


class AmbiguousCompanionError(HardwareError):
    """More than one audio function could be the GPU's companion."""
    def __init__(self, gpu_address: str, candidates: list):
        super().__init__(
            f"Several audio functions share the slot of {gpu_address}: {', '.join(candidates)}",
            code="AMBIGUOUS_COMPANION",
            details={"gpu": gpu_address, "candidates": candidates},
            remedy="Attach the audio function by hand with virsh attach-device --config",
        )


# =============================================================================
# Connection errors
# =============================================================================

class HypervisorError(SwitchError):
    """Base for libvirt errors."""
    pass


class LibvirtCallError(HypervisorError):
    """A libvirt call failed."""
    def __init__(self, operation: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Hypervisor operation failed: {operation}",
            code="HYPERVISOR_CALL_FAILED",
            details={"operation": operation},
            cause=cause,
        )


class LibvirtConnectionError(HypervisorError):
    """Failed to connect to libvirt."""
    def __init__(self, uri: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot connect to libvirt at {uri}",
            code="LIBVIRT_CONNECTION_FAILED",
            details={"uri": uri},
            cause=cause,
            remedy="Check that libvirtd is running and that you may use this connection",
        )
