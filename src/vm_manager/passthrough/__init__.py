"""
GPU Passthrough Module - hostdev descriptors, session checks and the attacher.
"""

from .gpu_attach import AttachReport, GPUAttacher
from .hostdev import HostdevDescriptor
from .requirements import PermissionWarning, check_session_requirements

__all__ = [
    "AttachReport",
    "GPUAttacher",
    "HostdevDescriptor",
    "PermissionWarning",
    "check_session_requirements",
]
