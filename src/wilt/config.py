"""Configuration system for wilt."""

from dataclasses import dataclass, field, fields
from pathlib import Path

import tomlkit

_LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class SamplingConfig:
    """Sampling cadence and history size."""

    tick_interval: float = 1.0  # Seconds between ticks
    history_capacity: int = 120  # Samples kept per process (2 minutes at 1Hz)
    read_timeout: float = 0.5  # Seconds one process read may take before it is skipped


@dataclass
class TUIConfig:
    """Terminal display configuration."""

    refresh_interval: float = 0.25  # Seconds between snapshot pulls


@dataclass
class LoggingConfig:
    """Log file configuration."""

    enabled: bool = True
    level: str = "info"
    max_bytes: int = 1024 * 1024  # Max log file size (1MB)
    backup_count: int = 2  # Number of backup log files to keep


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "wilt"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "wilt"

    @property
    def log_path(self) -> Path:
        return self.state_dir / "wilt.log"

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        if self.sampling.tick_interval <= 0:
            raise ValueError(
                f"sampling.tick_interval must be positive, got {self.sampling.tick_interval}"
            )
        if self.sampling.history_capacity < 1:
            raise ValueError(
                f"sampling.history_capacity must be at least 1, "
                f"got {self.sampling.history_capacity}"
            )
        if self.sampling.read_timeout <= 0:
            raise ValueError(
                f"sampling.read_timeout must be positive, got {self.sampling.read_timeout}"
            )
        if self.tui.refresh_interval <= 0:
            raise ValueError(
                f"tui.refresh_interval must be positive, got {self.tui.refresh_interval}"
            )
        if self.logging.level.lower() not in _LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {list(_LOG_LEVELS)}, got {self.logging.level!r}"
            )

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampling", "tui", "logging"):
            table = tomlkit.table()
            section = getattr(self, name)
            for f in fields(section):
                table.add(f.name, getattr(section, f.name))
            doc.add(name, table)
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() agree whenever the file is absent.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        config = cls(
            sampling=_load_section(SamplingConfig, "sampling", data.get("sampling", {})),
            tui=_load_section(TUIConfig, "tui", data.get("tui", {})),
            logging=_load_section(LoggingConfig, "logging", data.get("logging", {})),
        )
        config.validate()
        return config


def _check_type(section_name: str, key: str, expected: type, value):
    """Return value as the field's type, or raise ValueError if it is the wrong kind."""
    where = f"{section_name}.{key}"
    # bool is an int subclass, so it is only accepted where a bool is expected
    if expected is bool:
        ok = isinstance(value, bool)
    elif expected is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        value = float(value) if ok else value
    elif expected is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, expected)
    if not ok:
        raise ValueError(f"{where} must be {expected.__name__}, got {value!r}")
    return value


def _load_section(section_cls, name: str, data):
    """Build a config section from TOML data, using dataclass defaults for missing keys."""
    if not isinstance(data, dict):
        raise ValueError(f"[{name}] must be a table, got {data!r}")
    known = {f.name: f.type for f in fields(section_cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown [{name}] keys: {sorted(unknown)}")
    values = {key: _check_type(name, key, known[key], value) for key, value in data.items()}
    return section_cls(**values)
