"""
vfio-switch Utility Modules

File helpers shared by the configuration controllers.
"""

from .atomic_write import (
    atomic_write_text,
    backup_name,
    timestamped_backup,
)

__all__ = [
    "atomic_write_text",
    "backup_name",
    "timestamped_backup",
]
