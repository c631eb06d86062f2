"""CPU and RAM budget for chunked execution.

Resource detection is advisory: if the platform cannot report cores or
memory, a conservative default is used instead of failing the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import psutil

from ben_speed.config import GB

logger = logging.getLogger(__name__)

FALLBACK_CORES = 1
FALLBACK_RAM_BYTES = int(1 * GB)


@dataclass(frozen=True)
class ResourceBudget:
    """Cores and RAM left after the caller's reservations.

    Always at least 1 core and 0 bytes.
    """

    available_cores: int
    available_ram_bytes: int

    @property
    def available_ram_gb(self) -> float:
        return self.available_ram_bytes / GB


class ResourceProbe:
    """Reports system resources net of reservations.

    Platform lookups live in ``total_cores`` and ``total_ram_bytes`` so a
    subclass can replace them (tests, containers with cgroup limits).
    """

    def total_cores(self) -> int | None:
        return psutil.cpu_count(logical=True)

    def total_ram_bytes(self) -> int | None:
        return psutil.virtual_memory().total

    def probe(self, reserve_cores: int = 0, reserve_ram: float = 0) -> ResourceBudget:
        """Return the budget left after reserving cores and RAM.

        Args:
            reserve_cores: Cores to keep free.
            reserve_ram: GB of RAM to keep free.

        Returns:
            ResourceBudget clamped to at least 1 core and 0 bytes.
        """
        try:
            cores = self.total_cores()
            ram = self.total_ram_bytes()
        except Exception as e:
            logger.warning(
                "Resource detection failed (%s), using %d core and %.1f GB",
                e,
                FALLBACK_CORES,
                FALLBACK_RAM_BYTES / GB,
            )
            return ResourceBudget(FALLBACK_CORES, FALLBACK_RAM_BYTES)

        if not cores or ram is None:
            logger.warning(
                "Platform did not report cores/RAM (cores=%s, ram=%s), using defaults",
                cores,
                ram,
            )
            return ResourceBudget(FALLBACK_CORES, FALLBACK_RAM_BYTES)

        available_cores = cores - max(int(reserve_cores), 0)
        if available_cores < 1:
            logger.warning(
                "reserve_cores=%s leaves no cores out of %d, using 1",
                reserve_cores,
                cores,
            )
            available_cores = 1

        available_ram = int(ram - max(reserve_ram, 0) * GB)
        if available_ram < 0:
            logger.warning(
                "reserve_ram=%s GB exceeds total RAM of %.1f GB, using 0",
                reserve_ram,
                ram / GB,
            )
            available_ram = 0

        return ResourceBudget(available_cores, available_ram)


def probe(reserve_cores: int = 0, reserve_ram: float = 0) -> ResourceBudget:
    """Probe the current machine. See ResourceProbe.probe."""
    return ResourceProbe().probe(reserve_cores, reserve_ram)
