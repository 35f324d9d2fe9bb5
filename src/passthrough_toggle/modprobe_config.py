"""
Modprobe configuration document.

The global passthrough switch lives in a modprobe.d file such as::

    # options vfio-pci ids=10de:2484,10de:228b
    softdep nvidia pre: vfio-pci
    softdep nouveau pre: vfio-pci

Only two kinds of line matter and each is a field that is either active or
commented out:

- ``claim``: ``softdep <module> pre: ... vfio-pci`` makes vfio-pci claim the
  card before the native driver loads. This is the switch.
- ``id_list``: ``options vfio-pci ids=...`` would capture every device with
  those IDs. It must stay commented.

Documents are immutable. ``apply`` returns a new document and touches only
lines of the given field; every other byte is preserved.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Tuple

COMMENT_MARKER = re.compile(r"^#\s*")


class GlobalStatus(Enum):
    """Observable status of the global switch."""
    NOT_CONFIGURED = "not_configured"
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DirectiveField:
    """A directive recognised by an anchored pattern, active or commented."""
    name: str
    pattern: Pattern
    comment_prefix: str = "#"

    def classify(self, content: str) -> Optional[bool]:
        """True if active, False if commented out, None if not this field."""
        if self.pattern.match(content):
            return True
        if content.startswith("#"):
            if self.pattern.match(COMMENT_MARKER.sub("", content, count=1)):
                return False
        return None


def claim_field(passthrough_driver: str) -> DirectiveField:
    """``softdep <module> pre: ... <driver>`` lines."""
    driver = re.escape(passthrough_driver)
    return DirectiveField(
        name="claim",
        pattern=re.compile(rf"^softdep\s+\S+\s+pre:.*(?<![\w-]){driver}(?![\w-])"),
        comment_prefix="#",
    )


def id_list_field(passthrough_driver: str) -> DirectiveField:
    """``options <driver> ids=`` lines."""
    driver = re.escape(passthrough_driver)
    return DirectiveField(
        name="id_list",
        pattern=re.compile(rf"^options\s+{driver}\s+ids="),
        comment_prefix="# ",
    )


def _split_ending(line: str) -> Tuple[str, str]:
    content = line.rstrip("\r\n")
    return content, line[len(content):]


class ModprobeDocument:
    """Parsed modprobe.d file with its claim and id-list fields."""

    def __init__(self, text: str, passthrough_driver: str = "vfio-pci"):
        self.text = text
        self.passthrough_driver = passthrough_driver
        self.lines = text.splitlines(keepends=True)
        self.fields = {
            "claim": claim_field(passthrough_driver),
            "id_list": id_list_field(passthrough_driver),
        }

    @property
    def version(self) -> str:
        """Content hash, used to detect concurrent edits."""
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()

    def field_lines(self, name: str) -> List[Tuple[int, bool]]:
        """(index, active) for every line belonging to a field."""
        directive = self.fields[name]
        found = []
        for index, line in enumerate(self.lines):
            content, _ = _split_ending(line)
            state = directive.classify(content)
            if state is not None:
                found.append((index, state))
        return found

    def status(self) -> GlobalStatus:
        """
        Read-only status of the claim field.

        All claim lines active is ENABLED, all commented is DISABLED. No claim
        lines at all, or a mix of both, is UNKNOWN.
        """
        states = {active for _, active in self.field_lines("claim")}
        if states == {True}:
            return GlobalStatus.ENABLED
        if states == {False}:
            return GlobalStatus.DISABLED
        return GlobalStatus.UNKNOWN

    def is_active(self, name: str) -> bool:
        """True if any line of the field is active."""
        return any(active for _, active in self.field_lines(name))

    def apply(self, name: str, active: bool) -> Tuple["ModprobeDocument", List[int]]:
        """
        Set every line of a field active or commented.

        Returns:
            The new document and the 1-based numbers of the lines that changed
        """
        directive = self.fields[name]
        lines = list(self.lines)
        changed = []

        for index, is_active in self.field_lines(name):
            if is_active == active:
                continue
            content, ending = _split_ending(lines[index])
            if active:
                content = COMMENT_MARKER.sub("", content, count=1)
            else:
                content = directive.comment_prefix + content
            lines[index] = content + ending
            changed.append(index + 1)

        return ModprobeDocument("".join(lines), self.passthrough_driver), changed

    def with_claim(self, active: bool) -> Tuple["ModprobeDocument", List[int]]:
        """
        Toggle the claim directive and force the id-list commented.

        Returns:
            The new document and the sorted changed line numbers
        """
        document, claim_changes = self.apply("claim", active)
        document, id_changes = document.apply("id_list", False)
        return document, sorted(claim_changes + id_changes)
