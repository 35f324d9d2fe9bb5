"""
Session VM requirements.

VMs on ``qemu:///session`` run as the invoking user, so VFIO passthrough
only works if that user may open ``/dev/vfio/<group>`` and lock the guest's
memory. These checks never fail the command; each unmet requirement is
reported as a warning naming the script that fixes it.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import resource
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set

logger = logging.getLogger(__name__)

VFIO_DEV_DIR = Path("/dev/vfio")
KVM_GROUP = "kvm"
LIBVIRT_GROUP = "libvirt"

FIX_PERMISSIONS = "sudo ./fix-vfio-permissions.sh"
FIX_MEMLOCK = "sudo ./fix-memlock-limits.sh"


@dataclass(frozen=True)
class PermissionWarning:
    """One unmet session requirement."""
    check: str
    message: str
    remedy: str


def current_user() -> str:
    return os.environ.get("USER") or pwd.getpwuid(os.getuid()).pw_name


def user_groups(user: str) -> Set[str]:
    """Supplementary groups plus the primary group of a user."""
    groups = {g.gr_name for g in grp.getgrall() if user in g.gr_mem}
    try:
        groups.add(grp.getgrgid(pwd.getpwnam(user).pw_gid).gr_name)
    except KeyError:
        logger.debug(f"No passwd entry for {user}")
    return groups


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def vfio_devices_outside_group(group: str = KVM_GROUP, vfio_dir: Path = VFIO_DEV_DIR) -> List[Path]:
    """VFIO group nodes not owned by the given group. The container node is skipped."""
    if not vfio_dir.is_dir():
        return []
    return [
        device for device in sorted(vfio_dir.iterdir())
        if device.name != "vfio" and _group_name(device.stat().st_gid) != group
    ]


def memlock_unlimited() -> bool:
    soft, _ = resource.getrlimit(resource.RLIMIT_MEMLOCK)
    return soft == resource.RLIM_INFINITY


def check_session_requirements(
    user: Optional[str] = None,
    vfio_dir: Path = VFIO_DEV_DIR,
) -> List[PermissionWarning]:
    """
    Check what a session-scope passthrough VM needs.

    Args:
        user: User to check (default: the invoking user)
        vfio_dir: Where VFIO group device nodes live

    Returns:
        One warning per unmet requirement, empty if all is well
    """
    user = user or current_user()
    groups = user_groups(user)
    warnings = []

    for group in (KVM_GROUP, LIBVIRT_GROUP):
        if group not in groups:
            warnings.append(PermissionWarning(
                check=f"{group}-group",
                message=f"User '{user}' is not in the '{group}' group",
                remedy=FIX_PERMISSIONS,
            ))

    outside = vfio_devices_outside_group(KVM_GROUP, vfio_dir)
    if outside:
        warnings.append(PermissionWarning(
            check="vfio-device-group",
            message=f"VFIO devices not owned by the '{KVM_GROUP}' group: {', '.join(str(p) for p in outside)}",
            remedy=FIX_PERMISSIONS,
        ))

    if not memlock_unlimited():
        soft, _ = resource.getrlimit(resource.RLIMIT_MEMLOCK)
        warnings.append(PermissionWarning(
            check="memlock",
            message=f"Memory lock limit is {soft} bytes (should be unlimited)",
            remedy=FIX_MEMLOCK,
        ))

    for warning in warnings:
        logger.warning(f"{warning.message}; fix with {warning.remedy}")
    return warnings
