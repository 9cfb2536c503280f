import json
import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from mpbench.datastructures.type_aliases import DurationSeconds, PluginName

from .endpoints import DEFAULT_SERVICE_TIMEOUT
from .tracker import TrackingOptions

SETTINGS_SECTION = "mpbench"


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Iterable):
        return tuple(str(item) for item in value)
    return (str(value),)


def _as_path(value: Any) -> Path | None:
    if value is None or value == "":
        return None
    return Path(value)


@dataclass(slots=True)
class BenchmarkSettings:
    """mpbench run configuration settings."""

    topology_path: Path | None = None
    duration: DurationSeconds = 10.0
    report_interval: DurationSeconds = 1.0  # 0 disables periodic reports
    service_timeout: DurationSeconds = DEFAULT_SERVICE_TIMEOUT
    events_file: Path | None = None
    results_dir: Path | None = None
    log_level: str = "INFO"
    log_debug_scopes: tuple[str, ...] = ()
    plugins: tuple[PluginName, ...] = ()
    tracking: TrackingOptions = field(default_factory=TrackingOptions)
    resource_usage_enabled: bool = True
    resource_usage_interval: DurationSeconds = 1.0

    def __post_init__(self) -> None:
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")
        if self.report_interval < 0:
            raise ValueError("report_interval must not be negative")
        if self.service_timeout <= 0:
            raise ValueError("service_timeout must be positive")
        if self.resource_usage_interval <= 0:
            raise ValueError("resource_usage_interval must be positive")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BenchmarkSettings":
        """Build settings from a plain mapping, normalizing scalar values."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValueError(f"Unknown settings keys: {', '.join(unknown)}")

        values: dict[str, Any] = dict(payload)
        for key in ("topology_path", "events_file", "results_dir"):
            if key in values:
                values[key] = _as_path(values[key])
        for key in ("log_debug_scopes", "plugins"):
            if key in values:
                values[key] = _as_tuple(values[key])
        tracking = values.get("tracking")
        if isinstance(tracking, Mapping):
            values["tracking"] = TrackingOptions(**tracking)
        return cls(**values)

    @classmethod
    def from_toml(cls, path: str | Path) -> "BenchmarkSettings":
        with Path(path).open("rb") as handle:
            document = tomllib.load(handle)
        return cls.from_dict(document.get(SETTINGS_SECTION, document))

    @classmethod
    def from_json(cls, path: str | Path) -> "BenchmarkSettings":
        document = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(document.get(SETTINGS_SECTION, document))

    @classmethod
    def from_path(cls, path: str | Path) -> "BenchmarkSettings":
        """Load settings from a ``.toml`` or ``.json`` file."""
        path = Path(path)
        match path.suffix.lower():
            case ".toml":
                return cls.from_toml(path)
            case ".json":
                return cls.from_json(path)
        raise ValueError(f"Unsupported settings file type: {path.suffix or path.name}")

    def merged(self, **overrides: Any) -> "BenchmarkSettings":
        """Copy with every non-None override applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return BenchmarkSettings(**values)
