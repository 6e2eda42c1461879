#!/usr/bin/env python3
"""
numerai_tui/metrics.py - Host Metrics for the Dashboard Header

PURPOSE:
    Samples CPU, memory and disk on demand (once per render frame). GPU
    memory comes from nvidia-smi, polled in background to avoid blocking
    the render loop.

TUNABLE PARAMETERS:
    - GPU_POLL_INTERVAL: Seconds between nvidia-smi calls
"""

import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import psutil

logger = logging.getLogger(__name__)

GB = 1024 ** 3

# GPU polling interval in seconds
# TUNABLE: Increase to reduce GPU overhead, decrease for real-time VRAM
GPU_POLL_INTERVAL = int(os.environ.get("GPU_POLL_INTERVAL", "5"))


@dataclass(frozen=True)
class SystemMetricsSnapshot:
    """Host metrics for one render frame."""

    cpu_percent: float = 0.0
    mem_used_gb: float = 0.0
    mem_total_gb: float = 0.0
    disk_free_gb: float = 0.0
    disk_total_gb: float = 0.0
    uptime_seconds: float = 0.0
    gpu: Optional[Dict[str, Any]] = None

    @property
    def mem_percent(self) -> float:
        return self.mem_used_gb / self.mem_total_gb * 100 if self.mem_total_gb > 0 else 0.0

    @property
    def disk_used_percent(self) -> float:
        if self.disk_total_gb <= 0:
            return 0.0
        return (self.disk_total_gb - self.disk_free_gb) / self.disk_total_gb * 100


def poll_gpu_info() -> Dict[str, Any]:
    """
    Poll GPU information using nvidia-smi.

    RETURNS:
        Dictionary with GPU info ({"available": False} if no GPU)
    """
    try:
        result = subprocess.run(
            [
                "nvidia-smi",
                "--query-gpu=memory.used,memory.total,utilization.gpu",
                "--format=csv,noheader,nounits",
            ],
            capture_output=True,
            text=True,
            timeout=5,
        )

        if result.returncode == 0:
            parts = result.stdout.strip().splitlines()[0].split(",")
            if len(parts) >= 2:
                used = int(parts[0].strip())
                total = int(parts[1].strip())
                util = int(parts[2].strip()) if len(parts) > 2 else 0

                return {
                    "available": True,
                    "memory_used_mb": used,
                    "memory_total_mb": total,
                    "utilization_pct": util,
                }
    except (OSError, ValueError, IndexError, subprocess.SubprocessError) as e:
        logger.debug("nvidia-smi unavailable: %s", e)

    return {"available": False}


class SystemMetricsSampler:
    """
    Samples host metrics when asked.

    HOW IT WORKS:
        - CPU, memory and disk are read by sample() on the render thread
        - GPU info comes from nvidia-smi on a background poller thread;
          sample() only reads the cached result

    ARGS:
        disk_path: Filesystem whose free space is reported
        poll_gpu: Whether to call nvidia-smi at all
        gpu_interval: Seconds between nvidia-smi calls
    """

    def __init__(
        self,
        disk_path: str = ".",
        poll_gpu: bool = True,
        clock=time.monotonic,
        gpu_interval: float = GPU_POLL_INTERVAL,
    ):
        self.disk_path = disk_path
        self.poll_gpu = poll_gpu
        self.gpu_interval = gpu_interval
        self._clock = clock
        self._started = clock()
        self._gpu: Dict[str, Any] = {"available": False}
        self._gpu_lock = threading.Lock()
        self._gpu_stop = threading.Event()
        self._gpu_thread: Optional[threading.Thread] = None
        self.current = SystemMetricsSnapshot()

        # First cpu_percent(None) call always returns 0.0; prime it here
        try:
            psutil.cpu_percent(interval=None)
        except (OSError, RuntimeError) as e:
            logger.debug("CPU sampling unavailable: %s", e)

    # -------------------------------------------------------------------------
    # GPU poller
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background GPU poller. No-op when GPU polling is off."""
        if not self.poll_gpu or self._gpu_thread is not None:
            return
        self._gpu_stop.clear()
        self._gpu_thread = threading.Thread(
            target=self._gpu_poll_loop, name="numerai-gpu", daemon=True
        )
        self._gpu_thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the GPU poller; an in-flight nvidia-smi call is waited on up to timeout."""
        self._gpu_stop.set()
        thread, self._gpu_thread = self._gpu_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def poll_gpu_once(self) -> bool:
        """Refresh the cached GPU info. Returns True if a GPU answered."""
        info = poll_gpu_info()
        with self._gpu_lock:
            self._gpu = info
        return bool(info.get("available"))

    @property
    def gpu(self) -> Optional[Dict[str, Any]]:
        with self._gpu_lock:
            return dict(self._gpu) if self._gpu.get("available") else None

    def _gpu_poll_loop(self) -> None:
        while not self._gpu_stop.is_set():
            if not self.poll_gpu_once():
                # No GPU on this host; stop asking
                logger.info("No GPU detected; GPU polling stopped")
                return
            self._gpu_stop.wait(self.gpu_interval)

    # -------------------------------------------------------------------------
    # Sampling
    # -------------------------------------------------------------------------

    def sample(self) -> SystemMetricsSnapshot:
        """
        Take a fresh snapshot.

        Fields that cannot be read keep their previous value so the
        header never flips to zeros on a transient failure.
        """
        previous = self.current
        cpu = previous.cpu_percent
        mem_used, mem_total = previous.mem_used_gb, previous.mem_total_gb
        disk_free, disk_total = previous.disk_free_gb, previous.disk_total_gb

        try:
            cpu = float(psutil.cpu_percent(interval=None))
        except (OSError, RuntimeError) as e:
            logger.debug("CPU sample failed: %s", e)

        try:
            vm = psutil.virtual_memory()
            mem_used = (vm.total - vm.available) / GB
            mem_total = vm.total / GB
        except (OSError, RuntimeError) as e:
            logger.debug("Memory sample failed: %s", e)

        try:
            disk = psutil.disk_usage(self.disk_path)
            disk_free = disk.free / GB
            disk_total = disk.total / GB
        except (OSError, RuntimeError) as e:
            logger.debug("Disk sample failed for %s: %s", self.disk_path, e)

        self.current = SystemMetricsSnapshot(
            cpu_percent=cpu,
            mem_used_gb=mem_used,
            mem_total_gb=mem_total,
            disk_free_gb=disk_free,
            disk_total_gb=disk_total,
            uptime_seconds=self._clock() - self._started,
            gpu=self.gpu,
        )
        return self.current
