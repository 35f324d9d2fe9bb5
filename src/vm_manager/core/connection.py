"""
LibVirt Connection

Thin wrapper over libvirt-python for the handful of calls the attacher
needs. Every libvirt error is re-raised as a ``HypervisorError`` so callers
only deal with the vfio-switch error hierarchy.

The scope is always chosen by the caller, never guessed: session for an
unprivileged user's VMs, system for root-managed ones.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, List, Optional

try:
    import libvirt
    LIBVIRT_AVAILABLE = True
except ImportError:
    LIBVIRT_AVAILABLE = False
    libvirt = None

from common.exceptions import DependencyError, LibvirtCallError, LibvirtConnectionError

from .vm_state import VMState

logger = logging.getLogger(__name__)


class ConnectionScope(Enum):
    """Which libvirt daemon instance to talk to."""
    SESSION = "session"
    SYSTEM = "system"

    @property
    def uri(self) -> str:
        return f"qemu:///{self.value}"


class LibvirtConnection:
    """
    libvirt connection for one scope.

    Usage:
        with LibvirtConnection(ConnectionScope.SESSION) as conn:
            domain = conn.lookup("win11")
    """

    def __init__(self, scope: ConnectionScope = ConnectionScope.SESSION):
        if not LIBVIRT_AVAILABLE:
            raise DependencyError("libvirt-python", package="python3-libvirt")
        self.scope = scope
        self._conn: Optional[libvirt.virConnect] = None

    @property
    def uri(self) -> str:
        """Get the connection URI."""
        return self.scope.uri

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """
        Open the connection.

        Raises:
            LibvirtConnectionError: If libvirt refuses the connection
        """
        if self._conn is not None:
            return
        try:
            self._conn = libvirt.open(self.uri)
        except libvirt.libvirtError as e:
            raise LibvirtConnectionError(self.uri, cause=e) from e
        if self._conn is None:
            raise LibvirtConnectionError(self.uri)
        logger.info(f"Connected to libvirt: {self.uri}")

    def close(self) -> None:
        """Close the connection."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        except libvirt.libvirtError as e:
            logger.debug(f"Error closing {self.uri}: {e}")
        self._conn = None
        logger.info("Disconnected from libvirt")

    def __enter__(self) -> "LibvirtConnection":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _call(self, operation: str, fn: Callable, *args) -> Any:
        try:
            return fn(*args)
        except libvirt.libvirtError as e:
            raise LibvirtCallError(operation, cause=e) from e

    def _connection(self) -> "libvirt.virConnect":
        self.connect()
        return self._conn

    def lookup(self, name: str) -> Optional["libvirt.virDomain"]:
        """Find a domain by name, or None if it is not defined."""
        conn = self._connection()
        try:
            return conn.lookupByName(name)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                return None
            raise LibvirtCallError(f"lookup {name}", cause=e) from e

    def list_domain_names(self) -> List[str]:
        """Names of all defined domains, active or not."""
        conn = self._connection()
        domains = self._call("list domains", conn.listAllDomains, 0)
        return sorted(domain.name() for domain in domains)

    def state(self, domain: "libvirt.virDomain") -> VMState:
        state, _ = self._call(f"state of {domain.name()}", domain.state)
        return VMState(state)

    def dump_xml(self, domain: "libvirt.virDomain") -> str:
        """Full definition, as ``virsh dumpxml`` prints it."""
        return self._call(f"dump XML of {domain.name()}", domain.XMLDesc, 0)

    def attach_to_config(self, domain: "libvirt.virDomain", device_xml: str) -> None:
        """Add a device to the persistent definition only, never the live guest."""
        self._call(
            f"attach device to {domain.name()}",
            domain.attachDeviceFlags,
            device_xml,
            libvirt.VIR_DOMAIN_AFFECT_CONFIG,
        )

    def shutdown(self, domain: "libvirt.virDomain") -> None:
        """Ask the guest to shut down (ACPI)."""
        self._call(f"shut down {domain.name()}", domain.shutdown)
