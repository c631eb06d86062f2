"""Configuration for the ben-speed dispatcher.

Tuning values can be passed to ``speed()`` directly or loaded from
environment variables with ``SpeedConfig.from_env()``. Either way they are
validated before any data is touched.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path

from ben_speed.exceptions import ConfigurationError

GB = 1e9
DEFAULT_DB_FILE = "ben_speed.db"
DEFAULT_TEMP_DIRNAME = "ben_speed_temp"


@dataclass(frozen=True)
class SpeedConfig:
    """Validated dispatcher configuration.

    Attributes:
        memory_threshold_gb: In-memory tables above this size leave the
            in-memory path (default: 2)
        reserve_cores: CPU cores to keep free for other work (default: 2)
        reserve_ram: GB of RAM to keep free (default: 4)
        max_chunk_gb: Upper bound on one chunk's size (default: 0.5)
        db_file: DuckDB database file for the relational path
        temp_dir: Working directory for chunk artifacts; None means
            ``<cwd>/ben_speed_temp``
    """

    memory_threshold_gb: float = 2
    reserve_cores: int = 2
    reserve_ram: float = 4
    max_chunk_gb: float = 0.5
    db_file: str = DEFAULT_DB_FILE
    temp_dir: Path | None = None

    @property
    def memory_threshold_bytes(self) -> float:
        return self.memory_threshold_gb * GB

    @property
    def max_chunk_bytes(self) -> float:
        return self.max_chunk_gb * GB

    @property
    def reserve_ram_bytes(self) -> float:
        return self.reserve_ram * GB

    def resolved_temp_dir(self) -> Path:
        """Return the temp directory, falling back to one under the cwd."""
        if self.temp_dir is None:
            return Path.cwd() / DEFAULT_TEMP_DIRNAME
        return Path(self.temp_dir)

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigurationError: If any value is out of range
        """
        if self.memory_threshold_gb < 0:
            raise ConfigurationError(
                f"memory_threshold_gb must not be negative, got: {self.memory_threshold_gb}"
            )

        if self.reserve_cores < 0:
            raise ConfigurationError(
                f"reserve_cores must not be negative, got: {self.reserve_cores}"
            )

        if self.reserve_ram < 0:
            raise ConfigurationError(
                f"reserve_ram must not be negative, got: {self.reserve_ram}"
            )

        if self.max_chunk_gb <= 0:
            raise ConfigurationError(
                f"max_chunk_gb must be positive, got: {self.max_chunk_gb}"
            )

        if not str(self.db_file):
            raise ConfigurationError("db_file must not be empty")

        temp_dir = self.resolved_temp_dir()
        if temp_dir.exists() and not temp_dir.is_dir():
            raise ConfigurationError(f"temp_dir {temp_dir} exists and is not a directory")

    def ensure_temp_dir(self) -> Path:
        """Create the temp directory if it is missing and return it.

        Raises:
            ConfigurationError: If the directory cannot be created
        """
        temp_dir = self.resolved_temp_dir()
        try:
            temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Failed to create temp_dir {temp_dir}: {e}. "
                f"Check permissions for parent directories."
            ) from e
        return temp_dir

    def with_overrides(self, **overrides) -> "SpeedConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls) -> "SpeedConfig":
        """Load and validate configuration from environment variables.

        Environment Variables:
            BEN_SPEED_MEMORY_THRESHOLD_GB: In-memory size threshold (default: 2)
            BEN_SPEED_RESERVE_CORES: Cores kept free (default: 2)
            BEN_SPEED_RESERVE_RAM_GB: RAM kept free in GB (default: 4)
            BEN_SPEED_MAX_CHUNK_GB: Maximum chunk size in GB (default: 0.5)
            BEN_SPEED_DB_FILE: DuckDB file (default: ben_speed.db)
            BEN_SPEED_TEMP_DIR: Chunk working directory (default: ./ben_speed_temp)

        Returns:
            Validated configuration object

        Raises:
            ConfigurationError: If a variable cannot be parsed or is out of range
        """
        try:
            temp_dir = os.environ.get("BEN_SPEED_TEMP_DIR")
            config = cls(
                memory_threshold_gb=float(
                    os.environ.get("BEN_SPEED_MEMORY_THRESHOLD_GB", "2")
                ),
                reserve_cores=int(os.environ.get("BEN_SPEED_RESERVE_CORES", "2")),
                reserve_ram=float(os.environ.get("BEN_SPEED_RESERVE_RAM_GB", "4")),
                max_chunk_gb=float(os.environ.get("BEN_SPEED_MAX_CHUNK_GB", "0.5")),
                db_file=os.environ.get("BEN_SPEED_DB_FILE", DEFAULT_DB_FILE),
                temp_dir=Path(temp_dir) if temp_dir else None,
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Failed to parse BEN_SPEED_* environment variables: {e}"
            ) from e

        config.validate()

        return config
