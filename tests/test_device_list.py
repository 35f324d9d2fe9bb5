"""
Tests for the per-device binding list.
"""

from datetime import datetime
from unittest.mock import patch

import pytest

from common.exceptions import EmptyListError, InvalidFormatError
from hardware_detect.binding import BindingState
from hardware_detect.pci_address import parse
from passthrough_toggle.device_list import (
    LIST_HEADER,
    DeviceListController,
    DeviceListStore,
)
from passthrough_toggle.scope import PassthroughMode, Scope, ToggleOutcome


def backups_of(path):
    return sorted(path.parent.glob(f"{path.name}.backup.*"))


class TestDeviceListStore:
    """Tests for reading and writing the list file."""

    def test_missing_file_is_empty(self, tmp_path):
        store = DeviceListStore(tmp_path / "vfio-bind.list")
        assert store.read() == []
        assert not store.is_active()

    def test_skips_comments_and_blanks(self, tmp_path):
        path = tmp_path / "vfio-bind.list"
        path.write_text("# header\n\n03:00.0\n   \n  # indented comment\n0000:03:00.1\n")

        assert DeviceListStore(path).read() == [parse("03:00.0"), parse("03:00.1")]

    def test_bad_entry_names_file_and_line(self, tmp_path):
        path = tmp_path / "vfio-bind.list"
        path.write_text("# header\n03:00.0\nnot-an-address\n")

        with pytest.raises(InvalidFormatError) as exc:
            DeviceListStore(path).read()
        assert exc.value.details["source"] == f"{path}:3"

    def test_undecodable_file_is_invalid(self, tmp_path):
        path = tmp_path / "vfio-bind.list"
        path.write_bytes(b"0000:03:00.0\n\xff\xfe\n")

        with pytest.raises(InvalidFormatError) as exc:
            DeviceListStore(path).read()
        assert exc.value.details["source"] == str(path)

    def test_write_is_canonical_with_header(self, tmp_path):
        path = tmp_path / "vfio-bind.list"
        DeviceListStore(path).write([parse("0A:00.0"), parse("0a:00.1")])

        assert path.read_text() == LIST_HEADER + "0000:0a:00.0\n0000:0a:00.1\n"

    def test_truncate(self, tmp_path):
        path = tmp_path / "vfio-bind.list"
        path.write_text("03:00.0\n")

        DeviceListStore(path).truncate()
        assert path.read_text() == ""


class TestSet:
    """Tests for DeviceListController.set()."""

    def test_round_trip_order(self, controller_kwargs, toggle_settings):
        controller = DeviceListController(**controller_kwargs)

        controller.set("03:00.0", "03:00.1")

        assert controller.addresses() == [parse("03:00.0"), parse("03:00.1")]
        assert toggle_settings.bind_list.read_text() == (
            LIST_HEADER + "0000:03:00.0\n0000:03:00.1\n"
        )

    def test_replaces_prior_list_and_backs_it_up(self, controller_kwargs, toggle_settings):
        path = toggle_settings.bind_list
        path.write_text("0000:05:00.0\n0000:05:00.1\n0000:06:00.0\n")
        controller = DeviceListController(**controller_kwargs)

        controller.set("0000:03:00.1", "03:00.0")

        assert controller.addresses() == [parse("03:00.1"), parse("03:00.0")]
        backups = backups_of(path)
        assert len(backups) == 1
        assert backups[0].read_text() == "0000:05:00.0\n0000:05:00.1\n0000:06:00.0\n"

    def test_empty_prior_list_not_backed_up(self, controller_kwargs, toggle_settings):
        toggle_settings.bind_list.write_text("")

        DeviceListController(**controller_kwargs).set("03:00.0")
        assert backups_of(toggle_settings.bind_list) == []

    def test_primary_only(self, controller_kwargs):
        controller = DeviceListController(**controller_kwargs)
        assert controller.set(parse("03:00.0")) == [parse("03:00.0")]

    @pytest.mark.parametrize("primary,companion", [
        ("zz:00.0", None),
        ("03:00.0", "03:00.9"),
        ("03:00", "03:00.1"),
    ])
    def test_invalid_address_writes_nothing(self, controller_kwargs, toggle_settings, primary, companion):
        path = toggle_settings.bind_list
        path.write_text("0000:05:00.0\n")

        with pytest.raises(InvalidFormatError):
            DeviceListController(**controller_kwargs).set(primary, companion)

        assert path.read_text() == "0000:05:00.0\n"
        assert backups_of(path) == []


class TestEnableDisable:
    """Tests for enable() and disable()."""

    def test_enable_empty_list_fails_without_side_effects(self, controller_kwargs, toggle_settings, fake_boot):
        with pytest.raises(EmptyListError) as exc:
            DeviceListController(**controller_kwargs).enable()

        assert "single set" in exc.value.remedy
        assert not toggle_settings.bind_list.exists()
        fake_boot.refresh.assert_not_called()

    def test_enable_comment_only_list_fails(self, controller_kwargs, toggle_settings, fake_boot):
        toggle_settings.bind_list.write_text(LIST_HEADER)

        with pytest.raises(EmptyListError):
            DeviceListController(**controller_kwargs).enable()
        fake_boot.refresh.assert_not_called()

    def test_enable_refreshes_and_offers_reboot(self, controller_kwargs, fake_boot, fake_reboot):
        controller = DeviceListController(**controller_kwargs)
        controller.set("03:00.0", "03:00.1")

        result = controller.enable()

        assert result.outcome is ToggleOutcome.APPLIED
        assert result.scope is Scope.DEVICE_LIST
        assert result.target is PassthroughMode.VM
        fake_boot.refresh.assert_called_once()
        fake_reboot.offer.assert_called_once()

    def test_disable_truncates_and_backs_up(self, controller_kwargs, toggle_settings, fake_boot):
        path = toggle_settings.bind_list
        path.write_text("0000:03:00.0\n")

        result = DeviceListController(**controller_kwargs).disable()

        assert path.read_text() == ""
        assert result.backup.read_text() == "0000:03:00.0\n"
        assert result.target is PassthroughMode.HOST
        fake_boot.refresh.assert_called_once()

    def test_set_then_disable_in_one_second_keeps_both_backups(self, controller_kwargs, toggle_settings):
        path = toggle_settings.bind_list
        path.write_text("0000:01:00.0\n")
        controller = DeviceListController(**controller_kwargs)
        frozen = datetime(2024, 5, 1, 12, 0, 0)

        with patch("utils.atomic_write.datetime") as clock:
            clock.now.return_value = frozen
            controller.set("03:00.0", "03:00.1")
            controller.disable()

        contents = [p.read_text() for p in backups_of(path)]
        assert len(contents) == 2
        assert "0000:01:00.0\n" in contents
        assert LIST_HEADER + "0000:03:00.0\n0000:03:00.1\n" in contents

    def test_disable_without_prior_list(self, controller_kwargs, toggle_settings, fake_boot):
        result = DeviceListController(**controller_kwargs).disable()

        assert result.backup is None
        assert result.outcome is ToggleOutcome.APPLIED
        assert not toggle_settings.bind_list.exists()
        fake_boot.refresh.assert_called_once()


class TestStatus:
    """Tests for live status of listed devices."""

    def test_status_reports_live_bindings(self, controller_kwargs, toggle_settings, make_detector):
        toggle_settings.bind_list.write_text("03:00.0\n03:00.1\n04:00.0\n")
        detector = make_detector({"03:00.0": "vfio-pci", "03:00.1": "snd_hda_intel"})
        controller = DeviceListController(detector=detector, **controller_kwargs)

        states = [b.state for b in controller.status()]

        assert states == [BindingState.PASSTHROUGH, BindingState.HOST_DRIVER, BindingState.NONE]
        assert toggle_settings.bind_list.read_text() == "03:00.0\n03:00.1\n04:00.0\n"

    def test_desired_and_actual(self, controller_kwargs, toggle_settings, make_detector):
        detector = make_detector({"03:00.0": "nvidia"})
        controller = DeviceListController(detector=detector, **controller_kwargs)

        assert controller.desired_state() is PassthroughMode.HOST
        assert controller.actual_state() is PassthroughMode.UNKNOWN

        controller.set("03:00.0")
        assert controller.desired_state() is PassthroughMode.VM
        assert controller.actual_state() is PassthroughMode.HOST
