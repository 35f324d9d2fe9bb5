"""
Command Guards

Decorators shared by the vfio-toggle and vfio-attach commands.
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Callable

from .exceptions import PrivilegeError

logger = logging.getLogger(__name__)


def require_root(func: Callable) -> Callable:
    """
    Decorator that requires root/sudo privileges.

    Raises:
        PrivilegeError: If the effective user is not root
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if os.geteuid() != 0:
            operation = func.__name__
            if operation.startswith("cmd_"):
                operation = operation[len("cmd_"):]
            raise PrivilegeError(operation.replace("_", " "))
        return func(*args, **kwargs)
    return wrapper


def timed(func: Callable) -> Callable:
    """
    Decorator to log function execution time.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start
            logger.debug(f"{func.__name__} completed in {elapsed:.3f}s")
    return wrapper
