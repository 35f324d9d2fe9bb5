"""
VM power states.

Values match libvirt's ``virDomainState`` so ``VMState(domain.state()[0])``
works without importing libvirt.
"""

from enum import Enum


class VMState(Enum):
    """Virtual machine states."""
    NOSTATE = 0
    RUNNING = 1
    BLOCKED = 2
    PAUSED = 3
    SHUTDOWN = 4
    SHUTOFF = 5
    CRASHED = 6
    PMSUSPENDED = 7

    @property
    def label(self) -> str:
        """State name as ``virsh domstate`` prints it."""
        return _LABELS[self]

    @property
    def is_running(self) -> bool:
        """Running guests can be asked to shut down."""
        return self in (VMState.RUNNING, VMState.BLOCKED)

    @property
    def is_shutoff(self) -> bool:
        return self is VMState.SHUTOFF

    @property
    def is_inactive(self) -> bool:
        """No guest is running, so only the persistent definition exists."""
        return self in (VMState.NOSTATE, VMState.SHUTOFF, VMState.CRASHED)


_LABELS = {
    VMState.NOSTATE: "no state",
    VMState.RUNNING: "running",
    VMState.BLOCKED: "idle",
    VMState.PAUSED: "paused",
    VMState.SHUTDOWN: "in shutdown",
    VMState.SHUTOFF: "shut off",
    VMState.CRASHED: "crashed",
    VMState.PMSUSPENDED: "pmsuspended",
}
