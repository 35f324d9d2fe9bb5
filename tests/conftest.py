"""
Pytest configuration and shared fixtures for vfio-switch tests.

Provides fakes for lspci, the initramfs generator, reboot and libvirt so
no test touches the real system.
"""

import logging
import os
import pytest
from unittest.mock import MagicMock, patch
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hardware_detect.binding import Binding, BindingState
from hardware_detect.pci_address import PCIAddress
from hardware_detect.pci_scanner import PCIDevice, PCIScanner


# ============ Environment Fixtures ============

@pytest.fixture(autouse=True)
def restore_logging():
    """setup_logging() replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def toggle_settings(tmp_path: Path):
    """Settings pointing every artifact into a temporary directory."""
    from passthrough_toggle.settings import ToggleSettings

    return ToggleSettings(
        modprobe_conf=tmp_path / "modprobe.d" / "vfio.conf",
        bind_list=tmp_path / "vfio-bind.list",
        initramfs_command=["update-initramfs", "-u"],
        reboot_delay=0,
        backup_dir=tmp_path / "backups",
        shutdown_timeout=120,
    )


@pytest.fixture
def write_conf(toggle_settings):
    """Write the global modprobe file and return its path."""
    def _write(text: str) -> Path:
        path = toggle_settings.modprobe_conf
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path
    return _write


# ============ Boot / Reboot Fixtures ============

@pytest.fixture
def fake_boot():
    """Boot image whose refresh() records calls and does nothing."""
    from passthrough_toggle.boot_image import BootImage
    return MagicMock(spec=BootImage)


@pytest.fixture
def fake_reboot():
    """Reboot scheduler that always declines."""
    from passthrough_toggle.boot_image import RebootScheduler
    reboot = MagicMock(spec=RebootScheduler)
    reboot.offer.return_value = False
    return reboot


@pytest.fixture
def controller_kwargs(toggle_settings, fake_boot, fake_reboot):
    """Common keyword arguments for scope controllers."""
    from common.prompts import AlwaysNo
    return dict(
        settings=toggle_settings,
        boot=fake_boot,
        reboot=fake_reboot,
        confirm=AlwaysNo(),
    )


# ============ GPU/Hardware Fixtures ============

class FakeDetector:
    """Binding detector driven by a dict of address -> driver."""

    def __init__(self, drivers=None, passthrough_driver="vfio-pci"):
        self.passthrough_driver = passthrough_driver
        self.drivers = {}
        for address, driver in (drivers or {}).items():
            self.set(address, driver)

    def set(self, address, driver):
        self.drivers[PCIAddress.parse(str(address))] = driver

    def current_driver(self, address):
        return self.drivers.get(address)

    def binding(self, address):
        driver = self.current_driver(address)
        if driver is None:
            return Binding(address, BindingState.NONE)
        if driver == self.passthrough_driver:
            return Binding(address, BindingState.PASSTHROUGH, driver)
        return Binding(address, BindingState.HOST_DRIVER, driver)

    def is_passthrough(self, address):
        return self.current_driver(address) == self.passthrough_driver


class FakeScanner(PCIScanner):
    """PCIScanner over a fixed device list instead of lspci."""

    def __init__(self, devices=()):
        super().__init__()
        self._fixed = sorted(devices, key=lambda d: d.address)

    def scan(self):
        self.devices = list(self._fixed)
        return self.devices

    def describe(self, address):
        for device in self._fixed:
            if device.address == address:
                return device
        return None


def pci_device(address, class_code="0300", vendor_id="10de", device_id="2484", class_name=None):
    """Build a PCIDevice for tests."""
    names = {"0300": "VGA compatible controller", "0302": "3D controller", "0403": "Audio device"}
    return PCIDevice(
        address=PCIAddress.parse(address),
        class_code=class_code,
        class_name=class_name or names.get(class_code, "Non-VGA unclassified device"),
        vendor_id=vendor_id,
        device_id=device_id,
        description="NVIDIA Corporation Test Device",
    )


@pytest.fixture
def make_detector():
    """Factory for FakeDetector."""
    return FakeDetector


@pytest.fixture
def make_device():
    """Factory for PCIDevice."""
    return pci_device


@pytest.fixture
def make_scanner():
    """Factory for FakeScanner."""
    return FakeScanner


@pytest.fixture
def nvidia_gpu_with_audio():
    """A GPU at 03:00.0 with HDMI audio at 03:00.1, plus an Intel iGPU."""
    return [
        pci_device("00:02.0", vendor_id="8086", device_id="3e92"),
        pci_device("03:00.0", device_id="2484"),
        pci_device("03:00.1", class_code="0403", device_id="228b"),
    ]


# ============ Subprocess Fixtures ============

@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for tests."""
    with patch('subprocess.run') as mock_run:
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout="",
            stderr="",
        )
        yield mock_run


# ============ Libvirt Fixtures ============

@pytest.fixture
def mock_domain():
    """Mock libvirt domain."""
    domain = MagicMock()
    domain.name.return_value = "win11"
    return domain


@pytest.fixture
def mock_connection(mock_domain):
    """LibvirtConnection stand-in with a shut-off VM named win11."""
    from vm_manager.core.connection import ConnectionScope, LibvirtConnection
    from vm_manager.core.vm_state import VMState

    conn = MagicMock(spec=LibvirtConnection)
    conn.scope = ConnectionScope.SYSTEM
    conn.uri = ConnectionScope.SYSTEM.uri
    conn.lookup.return_value = mock_domain
    conn.list_domain_names.return_value = ["win11"]
    conn.state.return_value = VMState.SHUTOFF
    conn.dump_xml.return_value = "<domain type='kvm'><name>win11</name></domain>\n"
    return conn


# ============ Marker Configuration ============

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "requires_root: marks tests that need root privileges"
    )
    config.addinivalue_line(
        "markers", "requires_libvirt: marks tests that need libvirt running"
    )
    config.addinivalue_line(
        "markers", "unit: fast unit tests with no external deps"
    )
    config.addinivalue_line(
        "markers", "hardware: hardware-dependent tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests based on environment."""
    skip_hw = pytest.mark.skip(reason="Hardware tests disabled in CI")
    skip_root = pytest.mark.skip(reason="Requires root privileges")
    skip_libvirt = pytest.mark.skip(reason="Requires libvirt daemon")

    for item in items:
        # Skip hardware tests in CI
        if "hardware" in item.keywords and os.environ.get("CI"):
            item.add_marker(skip_hw)

        # Skip root tests if not root
        if "requires_root" in item.keywords and os.geteuid() != 0:
            item.add_marker(skip_root)

        # Skip libvirt tests if daemon not running
        if "requires_libvirt" in item.keywords:
            try:
                import libvirt
                conn = libvirt.open("qemu:///session")
                if conn:
                    conn.close()
            except Exception:
                item.add_marker(skip_libvirt)
