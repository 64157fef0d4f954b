"""Unit tests for system resource checks."""

from unittest.mock import MagicMock, patch

import pytest

from mediajobs.core.resources import (
    GB,
    ResourceRequirements,
    ResourceUsage,
    check_minimum_resources,
    get_current_usage,
)


def usage(memory_gb: float = 8.0, disk_gb: float = 250.0) -> ResourceUsage:
    return ResourceUsage(
        memory_available_gb=memory_gb,
        memory_percent=50.0,
        disk_total_gb=500.0,
        disk_available_gb=disk_gb,
        disk_percent=50.0,
    )


class TestGetCurrentUsage:
    @patch("mediajobs.core.resources.psutil.virtual_memory")
    @patch("mediajobs.core.resources.psutil.disk_usage")
    def test_reads_psutil(self, mock_disk: MagicMock, mock_memory: MagicMock, tmp_path) -> None:
        mock_memory.return_value = MagicMock(available=8 * GB, percent=50.0)
        mock_disk.return_value = MagicMock(total=500 * GB, free=250 * GB, percent=50.0)

        result = get_current_usage(str(tmp_path))

        mock_disk.assert_called_once_with(str(tmp_path))
        assert result == usage()

    @patch("mediajobs.core.resources.psutil.virtual_memory")
    @patch("mediajobs.core.resources.psutil.disk_usage")
    def test_missing_path_falls_back_to_root(self, mock_disk: MagicMock, mock_memory: MagicMock) -> None:
        mock_memory.return_value = MagicMock(available=4 * GB, percent=50.0)
        mock_disk.return_value = MagicMock(total=100 * GB, free=50 * GB, percent=50.0)

        get_current_usage("/no/such/directory")

        mock_disk.assert_called_once_with("/")


class TestCheckMinimumResources:
    @patch("mediajobs.core.resources.get_current_usage")
    def test_all_pass(self, mock_usage: MagicMock) -> None:
        mock_usage.return_value = usage()

        result = check_minimum_resources()

        assert result.passed is True
        assert result.errors == []
        assert result.warnings == []

    @pytest.mark.parametrize(
        "memory_gb,disk_gb,passed,message",
        [
            (0.1, 250.0, False, "Insufficient memory"),
            (8.0, 0.5, False, "Insufficient disk space"),
            (0.4, 250.0, True, "Low memory"),
            (8.0, 3.0, True, "Low disk space"),
        ],
    )
    @patch("mediajobs.core.resources.get_current_usage")
    def test_thresholds(
        self, mock_usage: MagicMock, memory_gb: float, disk_gb: float, passed: bool, message: str
    ) -> None:
        mock_usage.return_value = usage(memory_gb, disk_gb)

        result = check_minimum_resources()

        assert result.passed is passed
        assert any(message in line for line in result.errors + result.warnings)

    @patch("mediajobs.core.resources.get_current_usage")
    def test_custom_requirements(self, mock_usage: MagicMock) -> None:
        mock_usage.return_value = usage(disk_gb=40.0)

        result = check_minimum_resources(requirements=ResourceRequirements(min_disk_gb=50.0))

        assert result.passed is False
