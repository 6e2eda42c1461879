#!/usr/bin/env python3
"""
Tests for numerai_tui/metrics.py
"""

import subprocess
import time
from collections import namedtuple
from unittest.mock import MagicMock, patch

import pytest

from numerai_tui.metrics import GB, SystemMetricsSampler, SystemMetricsSnapshot, poll_gpu_info

VirtualMemory = namedtuple("VirtualMemory", "total available")
DiskUsage = namedtuple("DiskUsage", "total used free")


@pytest.fixture
def fake_psutil():
    with patch("numerai_tui.metrics.psutil") as mock_psutil:
        mock_psutil.cpu_percent.return_value = 37.5
        mock_psutil.virtual_memory.return_value = VirtualMemory(total=16 * GB, available=4 * GB)
        mock_psutil.disk_usage.return_value = DiskUsage(total=500 * GB, used=400 * GB, free=100 * GB)
        yield mock_psutil


class TestPollGpuInfo:
    def test_gpu_available(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="4096, 24576, 87\n")
            info = poll_gpu_info()

        assert info == {
            "available": True,
            "memory_used_mb": 4096,
            "memory_total_mb": 24576,
            "utilization_pct": 87,
        }

    def test_no_nvidia_smi(self):
        with patch("subprocess.run", side_effect=FileNotFoundError("nvidia-smi")):
            assert poll_gpu_info() == {"available": False}

    def test_timeout(self):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("nvidia-smi", 5)):
            assert poll_gpu_info() == {"available": False}

    def test_garbage_output(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="N/A, N/A\n")
            assert poll_gpu_info() == {"available": False}


class TestSampler:
    def test_sample(self, fake_psutil):
        clock = iter([100.0, 165.0]).__next__
        sampler = SystemMetricsSampler(disk_path="/data", poll_gpu=False, clock=clock)

        snap = sampler.sample()

        assert snap.cpu_percent == 37.5
        assert snap.mem_used_gb == 12.0
        assert snap.mem_total_gb == 16.0
        assert snap.mem_percent == 75.0
        assert snap.disk_free_gb == 100.0
        assert snap.disk_used_percent == 80.0
        assert snap.uptime_seconds == 65.0
        assert snap.gpu is None
        fake_psutil.disk_usage.assert_called_with("/data")

    def test_failed_reads_keep_previous_values(self, fake_psutil):
        sampler = SystemMetricsSampler(poll_gpu=False)
        sampler.sample()

        fake_psutil.disk_usage.side_effect = OSError("unmounted")
        snap = sampler.sample()

        assert snap.disk_free_gb == 100.0
        assert snap.cpu_percent == 37.5

    def test_sample_reads_cached_gpu(self, fake_psutil):
        sampler = SystemMetricsSampler()
        gpu = {"available": True, "memory_used_mb": 1, "memory_total_mb": 2, "utilization_pct": 3}

        with patch("numerai_tui.metrics.poll_gpu_info", return_value=gpu) as mock_poll:
            assert sampler.sample().gpu is None
            assert sampler.poll_gpu_once()
            assert sampler.sample().gpu == gpu
            sampler.sample()

        assert mock_poll.call_count == 1

    def test_poller_stops_without_gpu(self, fake_psutil):
        sampler = SystemMetricsSampler(gpu_interval=0.01)
        with patch("numerai_tui.metrics.poll_gpu_info", return_value={"available": False}) as mock_poll:
            sampler.start()
            thread = sampler._gpu_thread
            thread.join(2)

        assert not thread.is_alive()
        assert mock_poll.call_count == 1
        assert sampler.sample().gpu is None

    def test_poller_runs_until_stopped(self, fake_psutil):
        gpu = {"available": True, "memory_used_mb": 1, "memory_total_mb": 2, "utilization_pct": 3}
        sampler = SystemMetricsSampler(gpu_interval=0.01)
        with patch("numerai_tui.metrics.poll_gpu_info", return_value=gpu) as mock_poll:
            sampler.start()
            deadline = time.monotonic() + 2
            while mock_poll.call_count < 3 and time.monotonic() < deadline:
                time.sleep(0.01)
            sampler.stop(timeout=2)

        assert mock_poll.call_count >= 3
        assert sampler.sample().gpu == gpu

    def test_slow_nvidia_smi_does_not_block_sample(self, fake_psutil):
        def slow_run(*args, **kwargs):
            time.sleep(1.0)
            return MagicMock(returncode=0, stdout="4096, 24576, 87\n")

        sampler = SystemMetricsSampler()
        with patch("subprocess.run", side_effect=slow_run):
            sampler.start()
            try:
                start = time.monotonic()
                sampler.sample()
                assert time.monotonic() - start < 0.2
            finally:
                sampler.stop(timeout=3)

    def test_disabled_gpu_never_polls(self, fake_psutil):
        sampler = SystemMetricsSampler(poll_gpu=False)
        with patch("numerai_tui.metrics.poll_gpu_info") as mock_poll:
            sampler.start()
            sampler.sample()

        assert sampler._gpu_thread is None
        mock_poll.assert_not_called()


def test_snapshot_percent_guards():
    snap = SystemMetricsSnapshot()
    assert snap.mem_percent == 0.0
    assert snap.disk_used_percent == 0.0
