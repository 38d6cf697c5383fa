"""
Quarry Configuration Management
================================

Dataclass-based settings loaded from a TOML file.

Layout::

    [global]
    log_level = "INFO"
    log_file = ""            # empty disables file logging

    [apiscan]
    source_url = "https://malapi.io"
    max_concurrency = 4
    cache_dir = ""           # empty uses the platform cache directory

Missing keys fall back to the dataclass defaults and unknown keys are
ignored, so one file can be shared between tool versions.

References:
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
    - platformdirs. https://platformdirs.readthedocs.io/
"""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

APP_NAME = "apiscan"


def default_config_path() -> Path:
    """``<user config dir>/apiscan/config.toml``."""
    return Path(user_config_dir(APP_NAME)) / "config.toml"


# =========================== Sections ======================================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Settings shared by every Quarry tool."""

    log_level: str = "WARNING"
    log_file: str = ""
    log_json: bool = False
    debug: bool = False


@dataclass(frozen=False, slots=True)
class ApiScanConfig:
    """Settings for apiscan: remote source, cache and rendering.

    ``request_timeout`` bounds each HTTP request; together with
    ``max_retries`` it bounds how long a stalled detail page can hold one
    of the ``max_concurrency`` slots.
    """

    # Remote source
    source_url: str = "https://malapi.io"
    max_concurrency: int = 4
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    user_agent: str = "apiscan/1.0"
    failure_policy: str = "abort_category"

    # Cache
    cache_dir: str = ""
    cache_file: str = "data.mpk"

    # Input / output
    max_file_size: int = 52_428_800  # 50 MiB
    table_width: int = 80
    output_format: str = "txt"


@dataclass(frozen=False, slots=True)
class QuarryConfig:
    """Top-level configuration.

    Usage::

        config = QuarryConfig.load()               # default location
        config = QuarryConfig.load("apiscan.toml")
        config.apiscan.max_concurrency
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    apiscan: ApiScanConfig = field(default_factory=ApiScanConfig)

    @classmethod
    def load(cls, path: str | Path | None = None) -> QuarryConfig:
        """Load configuration from TOML.

        Args:
            path: Configuration file.  ``None`` uses
                :func:`default_config_path`.

        Returns:
            A populated :class:`QuarryConfig`.

        Raises:
            FileNotFoundError: If *path* was given explicitly and does not
                exist.  A missing default file yields pure defaults.
            tomllib.TOMLDecodeError: If the file is not valid TOML.
        """
        config_path = Path(path) if path is not None else default_config_path()

        if not config_path.is_file():
            if path is not None:
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=_build_section(GlobalConfig, raw.get("global", {})),
            apiscan=_build_section(ApiScanConfig, raw.get("apiscan", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _build_section(section: type, data: dict[str, Any]) -> Any:
    """Instantiate *section* from the keys of *data* it declares."""
    known = set(section.__dataclass_fields__)  # type: ignore[attr-defined]
    return section(**{k: v for k, v in data.items() if k in known})
