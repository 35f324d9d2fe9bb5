#!/usr/bin/env python3
"""
vfio-toggle - Command Line Interface

Switches the GPU between the host driver and vfio-pci. Every change takes
effect at the next boot.
"""

import argparse
import logging
import sys
from pathlib import Path

from common.decorators import require_root
from common.exceptions import SwitchError
from common.logging_config import setup_logging
from common.prompts import AlwaysYes, InteractiveConfirm
from hardware_detect.pci_scanner import PCIScanner

from .orchestrator import AutoToggle
from .scope import PassthroughMode, ToggleResult
from .settings import ToggleSettings

logger = logging.getLogger(__name__)


def _toggle(args) -> AutoToggle:
    settings = ToggleSettings.load(args.config)
    confirm = AlwaysYes() if args.yes else InteractiveConfirm()
    return AutoToggle(settings=settings, confirm=confirm, offer_reboot=not args.no_reboot)


def _finish(result: ToggleResult) -> int:
    if result.backup:
        logger.info(f"Backup kept at {result.backup}")
    return 0


@require_root
def cmd_auto(args) -> int:
    """Flip whichever scope is active."""
    return _finish(_toggle(args).run())


@require_root
def cmd_enable(args) -> int:
    """Enable global passthrough."""
    return _finish(_toggle(args).global_scope.enable())


@require_root
def cmd_disable(args) -> int:
    """Disable global passthrough."""
    return _finish(_toggle(args).global_scope.disable())


def cmd_status(args) -> int:
    """Show configured and live state."""
    toggle = _toggle(args)
    global_scope = toggle.global_scope
    device_list = toggle.device_list

    print("=== GPU Passthrough Status ===\n")
    print(f"Global config ({global_scope.path}): {global_scope.status().value}")
    list_state = "active" if device_list.is_active() else "inactive"
    print(f"Device list ({device_list.path}): {list_state}")
    print()

    desired = toggle.desired_state()
    actual = toggle.actual_state()
    print(f"After next boot: {_mode_label(desired, toggle.settings)}")
    print(f"Right now:       {_mode_label(actual, toggle.settings)}")
    if toggle.reboot_pending():
        print("⚠️  Reboot pending: the configured state has not taken effect yet")
    print()

    if global_scope.path.exists():
        print("Current configuration:")
        print(global_scope.path.read_text(encoding="utf-8", errors="replace"), end="")
    return 0


@require_root
def cmd_single_set(args) -> int:
    """Save the GPU (and audio) addresses to bind at boot."""
    _toggle(args).device_list.set(args.gpu, args.audio)
    return 0


@require_root
def cmd_single_enable(args) -> int:
    """Bind the listed devices to vfio-pci at next boot."""
    return _finish(_toggle(args).device_list.enable())


@require_root
def cmd_single_disable(args) -> int:
    """Return the listed devices to the host at next boot."""
    return _finish(_toggle(args).device_list.disable())


def cmd_single_status(args) -> int:
    """Show the listed devices and their live drivers."""
    toggle = _toggle(args)
    device_list = toggle.device_list
    bindings = device_list.status()

    print(f"Per-PCI binding list ({device_list.path}):")
    if not bindings:
        print("  (empty)")
        return 0

    scanner = PCIScanner()
    for binding in bindings:
        device = scanner.describe(binding.address)
        name = device.description if device else "not present"
        print(f"  • {binding.address}: {name}")
        print(f"    Driver: {binding.describe()}")
    return 0


def _mode_label(mode: PassthroughMode, settings: ToggleSettings) -> str:
    return {
        PassthroughMode.HOST: f"host ({settings.vendor_driver})",
        PassthroughMode.VM: f"VM ({settings.passthrough_driver})",
        PassthroughMode.UNKNOWN: "unknown",
    }[mode]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vfio-toggle",
        description="Toggle a GPU between the host driver and vfio-pci",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sudo vfio-toggle                              # Flip whichever scope is active
  sudo vfio-toggle enable                       # Pass every vendor GPU to VMs
  vfio-toggle status                            # Show configured and live state
  sudo vfio-toggle single set 03:00.0 03:00.1   # Pass one GPU and its audio
  sudo vfio-toggle single enable
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Show debug output")
    parser.add_argument("--config", default=None,
                        help="Settings file (default: /etc/vfio-switch/config.json)")
    parser.add_argument("--log-file", type=Path, default=None,
                        help="Also write a debug log to this file")
    parser.add_argument("--json-logs", action="store_true",
                        help="Write the log file as JSON lines")

    reboot = parser.add_mutually_exclusive_group()
    reboot.add_argument("-y", "--yes", action="store_true",
                        help="Answer yes to the reboot prompt")
    reboot.add_argument("--no-reboot", action="store_true",
                        help="Never offer to reboot")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    auto_parser = subparsers.add_parser("auto", help="Flip the active scope (default)")
    auto_parser.set_defaults(func=cmd_auto)

    enable_parser = subparsers.add_parser("enable", help="Enable global passthrough")
    enable_parser.set_defaults(func=cmd_enable)

    disable_parser = subparsers.add_parser("disable", help="Disable global passthrough")
    disable_parser.set_defaults(func=cmd_disable)

    status_parser = subparsers.add_parser("status", help="Show passthrough status")
    status_parser.set_defaults(func=cmd_status)

    single_parser = subparsers.add_parser("single", help="Per-device binding list")
    single_sub = single_parser.add_subparsers(dest="single_command", required=True)

    set_parser = single_sub.add_parser("set", help="Save GPU and audio addresses")
    set_parser.add_argument("gpu", help="GPU address, e.g. 03:00.0")
    set_parser.add_argument("audio", nargs="?", default=None,
                            help="Audio function address, e.g. 03:00.1")
    set_parser.set_defaults(func=cmd_single_set)

    single_enable = single_sub.add_parser("enable", help="Bind listed devices at next boot")
    single_enable.set_defaults(func=cmd_single_enable)

    single_disable = single_sub.add_parser("disable", help="Empty the list")
    single_disable.set_defaults(func=cmd_single_disable)

    single_status = single_sub.add_parser("status", help="Show listed devices")
    single_status.set_defaults(func=cmd_single_status)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        logging.DEBUG if args.verbose else logging.WARNING,
        log_file=args.log_file,
        json_logs=args.json_logs,
    )

    if args.command is None:
        # Default to auto
        args.func = cmd_auto

    try:
        return args.func(args)
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
