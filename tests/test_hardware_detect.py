#!/usr/bin/env python3
"""
Unit tests for hardware_detect module.
"""

import pytest
from unittest.mock import patch, MagicMock
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from common.exceptions import DependencyError, InvalidFormatError
from hardware_detect.pci_address import PCIAddress, normalize, parse


LSPCI_K_VFIO = """03:00.0 VGA compatible controller: NVIDIA Corporation GA104 [GeForce RTX 3070] (rev a1)
\tSubsystem: Micro-Star International Co., Ltd. [MSI] Device 3909
\tKernel driver in use: vfio-pci
\tKernel modules: nvidiafb, nouveau, nvidia_drm, nvidia
"""

LSPCI_K_NVIDIA = LSPCI_K_VFIO.replace("in use: vfio-pci", "in use: nvidia")

LSPCI_K_UNBOUND = """03:00.0 VGA compatible controller: NVIDIA Corporation GA104 [GeForce RTX 3070] (rev a1)
\tKernel modules: nvidiafb, nouveau
"""

LSPCI_DNN = """0000:00:02.0 VGA compatible controller [0300]: Intel Corporation UHD Graphics 630 [8086:3e92] (rev 00)
0000:00:1f.3 Audio device [0403]: Intel Corporation Cannon Lake PCH cAVS [8086:a348] (rev 10)
0000:03:00.1 Audio device [0403]: NVIDIA Corporation GA104 High Definition Audio Controller [10de:228b] (rev a1)
0000:03:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA104 [GeForce RTX 3070] [10de:2484] (rev a1)
0000:04:00.0 3D controller [0302]: NVIDIA Corporation TU104GL [Tesla T4] [10de:1eb8] (rev a1)
0001:00:00.0 VGA compatible controller [0300]: NVIDIA Corporation Other [10de:1111]
"""


class TestPCIAddress:
    """Tests for BDF parsing and normalisation."""

    @pytest.mark.parametrize("text,expected", [
        ("03:00.0", "0000:03:00.0"),
        ("0000:03:00.1", "0000:03:00.1"),
        ("0A:1F.7", "0000:0a:1f.7"),
        ("  65:00.0\n", "0000:65:00.0"),
    ])
    def test_parse_normalizes(self, text, expected):
        assert normalize(parse(text)) == expected
        assert str(PCIAddress.parse(text)) == expected

    @pytest.mark.parametrize("text", [
        "03:00.0",
        "0000:0a:1f.7",
        "FF:FF.3",
    ])
    def test_normalize_is_idempotent(self, text):
        once = normalize(parse(text))
        assert normalize(parse(once)) == once

    @pytest.mark.parametrize("text", [
        "",
        "3:00.0",
        "03:00.8",
        "03:00",
        "03-00.0",
        "0001:03:00.0",
        "gg:00.0",
        "0000:03:00.0.1",
        "03:000.0",
    ])
    def test_parse_rejects_malformed(self, text):
        with pytest.raises(InvalidFormatError):
            parse(text)

    def test_parse_rejects_non_string(self):
        with pytest.raises(InvalidFormatError):
            PCIAddress.parse(None)

    def test_equality_follows_canonical_form(self):
        assert parse("03:00.0") == parse("0000:03:00.0")
        assert hash(parse("0A:00.0")) == hash(parse("0000:0a:00.0"))
        assert parse("03:00.0") != parse("03:00.1")

    def test_short_form(self):
        assert parse("0000:03:00.1").short == "03:00.1"

    def test_companion_is_function_one(self):
        assert str(parse("03:00.0").companion()) == "0000:03:00.1"

    def test_same_slot(self):
        gpu = parse("03:00.0")
        assert gpu.same_slot(parse("03:00.3"))
        assert not gpu.same_slot(parse("03:01.0"))
        assert not gpu.same_slot(parse("04:00.0"))

    def test_libvirt_attrs(self):
        assert parse("0a:1f.3").libvirt_attrs() == {
            "domain": "0x0000",
            "bus": "0x0a",
            "slot": "0x1f",
            "function": "0x3",
        }

    def test_normalize_accepts_address(self):
        address = parse("03:00.0")
        assert normalize(address) == "0000:03:00.0"

    def test_addresses_sort_numerically(self):
        addresses = [parse("10:00.0"), parse("03:00.1"), parse("03:00.0")]
        assert [str(a) for a in sorted(addresses)] == [
            "0000:03:00.0", "0000:03:00.1", "0000:10:00.0",
        ]


class TestBindingDetector:
    """Tests for live driver detection."""

    def test_parse_driver_in_use(self):
        from hardware_detect.binding import parse_driver_in_use

        assert parse_driver_in_use(LSPCI_K_VFIO) == "vfio-pci"
        assert parse_driver_in_use(LSPCI_K_UNBOUND) is None
        assert parse_driver_in_use("") is None

    def test_current_driver_runs_lspci(self, mock_subprocess):
        from hardware_detect.binding import BindingDetector

        mock_subprocess.return_value = MagicMock(returncode=0, stdout=LSPCI_K_NVIDIA, stderr="")

        assert BindingDetector().current_driver(parse("0000:03:00.0")) == "nvidia"
        args = mock_subprocess.call_args[0][0]
        assert args == ["lspci", "-k", "-s", "03:00.0"]

    def test_unknown_address_yields_none(self, mock_subprocess):
        from hardware_detect.binding import BindingDetector

        mock_subprocess.return_value = MagicMock(returncode=0, stdout="", stderr="")
        assert BindingDetector().current_driver(parse("7f:00.0")) is None

    @pytest.mark.parametrize("stdout,state,driver", [
        (LSPCI_K_VFIO, "PASSTHROUGH", "vfio-pci"),
        (LSPCI_K_NVIDIA, "HOST_DRIVER", "nvidia"),
        (LSPCI_K_UNBOUND, "NONE", None),
        ("", "NONE", None),
    ])
    def test_binding_states(self, mock_subprocess, stdout, state, driver):
        from hardware_detect.binding import BindingDetector, BindingState

        mock_subprocess.return_value = MagicMock(returncode=0, stdout=stdout, stderr="")
        binding = BindingDetector().binding(parse("03:00.0"))

        assert binding.state is BindingState[state]
        assert binding.driver == driver

    def test_failing_lspci_is_unknown(self, mock_subprocess):
        from hardware_detect.binding import BindingDetector, BindingState

        mock_subprocess.return_value = MagicMock(returncode=1, stdout="", stderr="pcilib: error")
        binding = BindingDetector().binding(parse("03:00.0"))

        assert binding.state is BindingState.UNKNOWN
        assert binding.describe() == "unknown"

    def test_missing_lspci_names_package(self, mock_subprocess):
        from hardware_detect.binding import BindingDetector

        mock_subprocess.side_effect = FileNotFoundError("lspci")
        with pytest.raises(DependencyError) as exc:
            BindingDetector().current_driver(parse("03:00.0"))

        assert exc.value.details["package"] == "pciutils"

    def test_is_passthrough(self, mock_subprocess):
        from hardware_detect.binding import BindingDetector

        mock_subprocess.return_value = MagicMock(returncode=0, stdout=LSPCI_K_VFIO, stderr="")
        assert BindingDetector().is_passthrough(parse("03:00.0")) is True

    def test_describe(self):
        from hardware_detect.binding import Binding, BindingState

        address = parse("03:00.0")
        assert Binding(address, BindingState.HOST_DRIVER, "nvidia").describe() == "host (nvidia)"
        assert Binding(address, BindingState.PASSTHROUGH, "vfio-pci").describe() == "pass-through (vfio-pci)"
        assert Binding(address, BindingState.NONE).describe() == "none"


class TestPCIScanner:
    """Tests for lspci -Dnn enumeration."""

    def test_parse_lspci_line(self):
        from hardware_detect.pci_scanner import parse_lspci_line

        device = parse_lspci_line(
            "0000:03:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA104 "
            "[GeForce RTX 3070] [10de:2484] (rev a1)"
        )

        assert device.address == parse("03:00.0")
        assert device.class_code == "0300"
        assert device.class_name == "VGA compatible controller"
        assert device.vendor_id == "10de"
        assert device.device_id == "2484"
        assert device.description == "NVIDIA Corporation GA104 [GeForce RTX 3070]"
        assert device.vfio_ids == "10de:2484"
        assert device.is_display
        assert not device.is_audio

    def test_parse_lspci_line_rejects_garbage(self):
        from hardware_detect.pci_scanner import parse_lspci_line

        assert parse_lspci_line("not lspci output") is None
        assert parse_lspci_line("") is None

    def test_scan_sorts_and_skips_other_domains(self, mock_subprocess):
        from hardware_detect.pci_scanner import PCIScanner

        mock_subprocess.return_value = MagicMock(returncode=0, stdout=LSPCI_DNN, stderr="")
        devices = PCIScanner().scan()

        assert [str(d.address) for d in devices] == [
            "0000:00:02.0", "0000:00:1f.3", "0000:03:00.0", "0000:03:00.1", "0000:04:00.0",
        ]
        assert mock_subprocess.call_args[0][0] == ["lspci", "-Dnn"]

    def test_vendor_filters(self, mock_subprocess):
        from hardware_detect.pci_scanner import PCIScanner

        mock_subprocess.return_value = MagicMock(returncode=0, stdout=LSPCI_DNN, stderr="")
        scanner = PCIScanner()

        displays = scanner.display_devices("10DE")
        audio = scanner.audio_devices("10de")

        assert [str(d.address) for d in displays] == ["0000:03:00.0", "0000:04:00.0"]
        assert [str(d.address) for d in audio] == ["0000:03:00.1"]
        # Filters share one scan
        assert mock_subprocess.call_count == 1

    def test_describe(self, mock_subprocess):
        from hardware_detect.pci_scanner import PCIScanner

        line = LSPCI_DNN.splitlines()[2]
        mock_subprocess.return_value = MagicMock(returncode=0, stdout=line, stderr="")

        device = PCIScanner().describe(parse("03:00.1"))
        assert device.is_audio
        assert mock_subprocess.call_args[0][0] == ["lspci", "-Dnn", "-s", "03:00.1"]

    def test_describe_missing_device(self, mock_subprocess):
        from hardware_detect.pci_scanner import PCIScanner

        assert PCIScanner().describe(parse("7f:00.0")) is None

    def test_lspci_failure_yields_nothing(self, mock_subprocess):
        from hardware_detect.pci_scanner import PCIScanner

        mock_subprocess.return_value = MagicMock(returncode=1, stdout="", stderr="boom")
        assert PCIScanner().scan() == []

    def test_missing_lspci(self, mock_subprocess):
        from hardware_detect.pci_scanner import PCIScanner

        mock_subprocess.side_effect = FileNotFoundError("lspci")
        with pytest.raises(DependencyError):
            PCIScanner().scan()
