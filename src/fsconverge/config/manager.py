# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.02
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/config/manager.py

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional, Literal, Final

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from fsconverge.system.exceptions import ConfigError


# ---- Constants ----

ENGINE_CFG: Final = "fsconverge.yml"

DEFAULT_BACKUP_SUFFIX: Final = ".fsc-bak"
DEFAULT_TEMP_SUFFIX: Final = ".fsctmp"
DEFAULT_SOURCE_PORT: Final = 22

ChecksumType = Literal["md5", "md5lite", "sha256", "xxh3"]


def _get_engine_config_search_paths() -> tuple[Path, ...]:
    """Get config file search paths (ordered by priority: lowest to highest).

    Evaluated at call time so environment overrides set by tests are seen.
    """
    return (
        Path("/etc/fsconverge") / ENGINE_CFG,  # System defaults
        Path.home() / ".config" / "fsconverge" / ENGINE_CFG,  # User config
        Path(os.getenv("XDG_CONFIG_HOME", "")) / "fsconverge" / ENGINE_CFG,  # XDG override
        Path(os.getenv("FSCONVERGE_CONFIG_HOME", "")) / ENGINE_CFG,  # Explicit override (highest priority)
    )


def _load_merged_config_data(candidates: tuple[Path, ...]) -> dict:
    """Load and merge config data from candidate paths.

    Later candidates override earlier ones key by key. Missing files are
    skipped; an unreadable or malformed file is a ConfigError.
    """
    merged_data = {}
    found_configs = []

    for candidate in candidates:
        # Empty env vars produce relative paths like "fsconverge/fsconverge.yml"
        if not candidate.is_absolute() or not candidate.exists():
            continue
        try:
            with candidate.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {candidate}: {e}", path=str(candidate)) from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {candidate} must contain a mapping", path=str(candidate))

        merged_data.update(data)
        found_configs.append(str(candidate))
        logger.debug(f"Loaded config from {candidate}")

    if found_configs:
        logger.debug(f"Merged config from: {', '.join(found_configs)}")
    else:
        logger.debug("No fsconverge.yml found, using defaults")
    return merged_data


# ---- Config Models ----

class BucketConfig(BaseModel):
    """A named content-addressed backup bucket."""
    path: Path  # Root directory of the bucket store


class SSHUserConfig(BaseModel):
    """SSH settings for fsc:// sources."""
    username: Optional[str] = None
    key_path: Optional[Path] = None  # Path to SSH private key
    timeout: float = 10.0


class EngineConfig(BaseModel):
    """Engine-wide settings, shared by every entity in a run."""

    # Optional logging configuration
    local_log: Optional[Path] = None

    default_backup_suffix: str = DEFAULT_BACKUP_SUFFIX
    temp_suffix: str = DEFAULT_TEMP_SUFFIX
    default_checksum: ChecksumType = "md5"

    # Backup buckets, by name
    buckets: dict[str, BucketConfig] = Field(default_factory=dict)

    # Remote sources
    source_port: int = DEFAULT_SOURCE_PORT  # SSH port for fsc:// sources
    remote_mount_root: Path = Path("/srv/fsconverge")
    ssh: SSHUserConfig = Field(default_factory=SSHUserConfig)

    # Mounts served by the local file server, in addition to "localhost" -> /
    mounts: dict[str, Path] = Field(default_factory=dict)

    @field_validator("default_backup_suffix", "temp_suffix")
    @classmethod
    def suffix_is_dotted(cls, value: str) -> str:
        if not value.startswith(".") or "/" in value:
            raise ValueError(f"suffix must start with '.' and contain no '/': {value!r}")
        return value

    @classmethod
    def load(cls, config_path: Path) -> "EngineConfig":
        """Load engine config from a single file."""
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)
        except Exception as e:
            raise ConfigError(str(e), path=str(config_path)) from e


def load_merged_engine_config() -> EngineConfig:
    """Load and merge engine config from all locations (system defaults + user overrides)."""
    candidates = _get_engine_config_search_paths()
    merged_data = _load_merged_config_data(candidates)
    try:
        return EngineConfig.model_validate(merged_data)
    except Exception as e:
        raise ConfigError(f"Invalid engine config: {e}") from e


# ---- Declaration Files ----

class DeclarationFile(BaseModel):
    """A YAML file of file declarations, one mapping per managed path."""
    files: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("files")
    @classmethod
    def every_entry_has_path(cls, files: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for index, entry in enumerate(files):
            if "path" not in entry:
                raise ValueError(f"declaration #{index} has no 'path'")
        return files


def load_declarations(declarations_path: Path) -> list[dict[str, Any]]:
    """Read raw file declarations from a YAML file.

    The values are left raw; they are parsed and validated when the
    entities are declared.
    """
    try:
        with declarations_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return DeclarationFile.model_validate(data).files
    except Exception as e:
        raise ConfigError(f"Error reading declarations: {e}", path=str(declarations_path)) from e


# done.
