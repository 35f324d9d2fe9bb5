#!/usr/bin/env python3
"""
vfio-attach - Command Line Interface

Adds the GPU currently bound to vfio-pci (and its audio function) to an
existing libvirt VM.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from common.exceptions import PrivilegeError, SwitchError
from common.logging_config import setup_logging
from common.prompts import AlwaysYes, InteractiveConfirm
from passthrough_toggle.settings import ToggleSettings

from .core.connection import ConnectionScope, LibvirtConnection
from .passthrough.gpu_attach import AttachReport, GPUAttacher

logger = logging.getLogger(__name__)


def print_summary(report: AttachReport) -> None:
    """Print the outcome and next steps."""
    print()
    print("=== Configuration Complete ===")
    print()
    if report.failures:
        print(f"GPU added to VM {report.vm_name}, with problems:")
        for address, reason in report.failures.items():
            print(f"  ⚠ {address}: {reason}")
    else:
        print(f"GPU has been added to VM: {report.vm_name}")
    print()
    print("Next steps:")
    print(f"  1. Start the VM: virsh --connect {report.uri} start {report.vm_name}")
    print("  2. Install the GPU driver inside the guest and reboot it")
    print()
    print(f"Backup saved at: {report.backup}")
    print(f"To restore: {report.restore_hint}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vfio-attach",
        description="Add a vfio-pci bound GPU to a libvirt VM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vfio-attach win11                  # VM on the user session connection
  sudo vfio-attach win11 --system    # VM on the system connection
        """
    )
    parser.add_argument("vm_name", help="Name of the VM to modify")
    parser.add_argument("--system", action="store_true",
                        help="Use qemu:///system (requires root)")
    parser.add_argument("-y", "--yes", action="store_true",
                        help="Answer yes to every question")
    parser.add_argument("--backup-dir", type=Path, default=None,
                        help="Where to save the VM definition backup (default: current directory)")
    parser.add_argument("--config", default=None,
                        help="Settings file (default: /etc/vfio-switch/config.json)")
    parser.add_argument("--log-file", type=Path, default=None,
                        help="Also write a debug log to this file")
    parser.add_argument("--json-logs", action="store_true",
                        help="Write the log file as JSON lines")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show debug output")
    return parser


def run(args) -> int:
    if args.system and os.geteuid() != 0:
        raise PrivilegeError("--system")

    settings = ToggleSettings.load(args.config)
    if args.backup_dir is not None:
        settings.backup_dir = args.backup_dir

    scope = ConnectionScope.SYSTEM if args.system else ConnectionScope.SESSION
    confirm = AlwaysYes() if args.yes else InteractiveConfirm()

    with LibvirtConnection(scope) as connection:
        report = GPUAttacher(connection, confirm=confirm, settings=settings).attach(args.vm_name)

    if not report.cancelled:
        print_summary(report)
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(
        logging.DEBUG if args.verbose else logging.WARNING,
        log_file=args.log_file,
        json_logs=args.json_logs,
    )

    try:
        return run(args)
    except SwitchError as e:
        logger.debug(f"{e.code}: {e.details}")
        print(f"❌ {e.message}", file=sys.stderr)
        if e.remedy:
            print(f"   {e.remedy}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
