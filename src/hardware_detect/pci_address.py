"""
PCI Bus-Device-Function addresses.

Accepts ``bb:ss.f`` or ``0000:bb:ss.f`` and always renders the canonical
``dddd:bb:ss.f`` form in lowercase hex.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Union

from common.exceptions import InvalidFormatError

DEFAULT_DOMAIN = 0

BDF_PATTERN = re.compile(
    r"^(?:(?P<domain>0000):)?(?P<bus>[0-9a-fA-F]{2}):(?P<slot>[0-9a-fA-F]{2})\.(?P<function>[0-7])$"
)


@dataclass(frozen=True, order=True)
class PCIAddress:
    """A PCI function address on the default domain."""

    domain: int
    bus: int
    slot: int
    function: int

    @classmethod
    def parse(cls, text: str, source: Optional[str] = None) -> "PCIAddress":
        """
        Parse a BDF string.

        Args:
            text: Address such as "03:00.0" or "0000:03:00.0"
            source: Where the text came from, for the error message

        Raises:
            InvalidFormatError: If the text is not a valid BDF
        """
        if not isinstance(text, str):
            raise InvalidFormatError(repr(text), source)

        match = BDF_PATTERN.match(text.strip())
        if not match:
            raise InvalidFormatError(text, source)

        return cls(
            domain=DEFAULT_DOMAIN,
            bus=int(match.group("bus"), 16),
            slot=int(match.group("slot"), 16),
            function=int(match.group("function")),
        )

    def __str__(self) -> str:
        return f"{self.domain:04x}:{self.bus:02x}:{self.slot:02x}.{self.function:x}"

    @property
    def short(self) -> str:
        """Address without the domain, as ``lspci -s`` prints it."""
        return f"{self.bus:02x}:{self.slot:02x}.{self.function:x}"

    def companion(self) -> "PCIAddress":
        """Function .1 in the same slot, where GPUs put their HDMI audio."""
        return PCIAddress(self.domain, self.bus, self.slot, 1)

    def same_slot(self, other: "PCIAddress") -> bool:
        """True if both functions sit in the same bus/slot."""
        return (self.domain, self.bus, self.slot) == (other.domain, other.bus, other.slot)

    def libvirt_attrs(self) -> Dict[str, str]:
        """Attributes for a libvirt ``<address>`` element."""
        return {
            "domain": f"0x{self.domain:04x}",
            "bus": f"0x{self.bus:02x}",
            "slot": f"0x{self.slot:02x}",
            "function": f"0x{self.function:x}",
        }


def parse(text: str) -> PCIAddress:
    """Parse a BDF string, raising InvalidFormatError when malformed."""
    return PCIAddress.parse(text)


def normalize(address: Union[PCIAddress, str]) -> str:
    """Canonical ``dddd:bb:ss.f`` text for an address or address string."""
    if isinstance(address, str):
        address = PCIAddress.parse(address)
    return str(address)
