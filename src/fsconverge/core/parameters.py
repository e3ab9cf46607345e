# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/parameters.py

"""
Typed parameters and desired state for a file declaration.

Raw declared values arrive loosely typed (booleans, strings, numeric
strings, lists). Each parameter has one explicit parse function that maps
the accepted literal forms onto a single typed value and rejects
everything else with a ValidationError. The pydantic models below only
wire those functions together.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, Literal, Mapping, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from fsconverge.config.manager import DEFAULT_BACKUP_SUFFIX, ChecksumType
from fsconverge.system.exceptions import InternalContractError, ValidationError


RECURSE_INFINITE: Final = math.inf

Depth = Union[int, float]
LinkMode = Literal["follow", "manage", "ignore"]
EnsureKind = Literal["present", "file", "directory", "link", "absent"]

LINK_MODES: Final[frozenset[str]] = frozenset({"follow", "manage", "ignore"})
ENSURE_KINDS: Final[frozenset[str]] = frozenset({"present", "file", "directory", "link", "absent"})

_TRUE_STRINGS: Final = frozenset({"true", "yes"})
_FALSE_STRINGS: Final = frozenset({"false", "no"})


class BackupKind(str, Enum):
    NONE = "none"
    SUFFIX = "suffix"
    BUCKET = "bucket"


@dataclass(frozen=True)
class BackupPolicy:
    """Where an existing file goes before it is replaced."""
    kind: BackupKind
    value: Optional[str] = None  # suffix or bucket name

    @property
    def enabled(self) -> bool:
        return self.kind is not BackupKind.NONE

    @classmethod
    def disabled(cls) -> "BackupPolicy":
        return cls(BackupKind.NONE)

    def __str__(self) -> str:
        return "false" if not self.enabled else str(self.value)


# ---- Parse functions ----

def validate_path(value: Any) -> str:
    """Require a fully qualified path and normalize it."""
    if not isinstance(value, str) or not value.startswith(os.sep):
        raise ValidationError(f"File paths must be fully qualified, not {value!r}")
    path = os.path.normpath(value)
    # normpath keeps a leading '//' on POSIX
    if path.startswith("//"):
        path = "/" + path.lstrip("/")
    return path


def parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in _TRUE_STRINGS | _FALSE_STRINGS:
        return value.lower() in _TRUE_STRINGS
    raise ValidationError(f"Invalid value for {name}: {value!r}")


def parse_backup(value: Any, default_suffix: str = DEFAULT_BACKUP_SUFFIX) -> BackupPolicy:
    """Map a declared backup value onto a BackupPolicy.

    false / "false"              -> no backup
    true / "true" / the default  -> default local suffix
    ".anything"                  -> local suffix
    any other non-empty string   -> bucket name, resolved at backup time
    """
    if value is False or (isinstance(value, str) and value.lower() == "false"):
        return BackupPolicy.disabled()
    if value is True or (isinstance(value, str) and value.lower() == "true") or value == default_suffix:
        return BackupPolicy(BackupKind.SUFFIX, default_suffix)
    if isinstance(value, str) and value:
        if value.startswith("."):
            if "/" in value:
                raise ValidationError(f"Backup suffix may not contain '/': {value!r}")
            return BackupPolicy(BackupKind.SUFFIX, value)
        return BackupPolicy(BackupKind.BUCKET, value)
    raise ValidationError(f"Invalid backup type {value!r}")


def parse_recurse(value: Any) -> Optional[Depth]:
    """Map a declared recurse value onto a depth.

    true / "true" / "inf" -> RECURSE_INFINITE
    false / "false"       -> 0
    N or "N" (N >= 0)     -> N
    """
    if value is None:
        return None
    if value is True:
        return RECURSE_INFINITE
    if value is False:
        return 0
    if isinstance(value, float) and math.isinf(value) and value > 0:
        return RECURSE_INFINITE
    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"Recursion depth must not be negative: {value}")
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "inf"):
            return RECURSE_INFINITE
        if lowered == "false":
            return 0
        if lowered.isdigit():
            return int(lowered)
    raise ValidationError(f"Invalid recurse value {value!r}")


def parse_ignore(value: Any) -> frozenset[str]:
    """Normalize ignore patterns to a frozenset of globs."""
    if value is None or value is False:
        return frozenset()
    if isinstance(value, str):
        return frozenset({value})
    if isinstance(value, (list, tuple, set, frozenset)) and all(isinstance(v, str) for v in value):
        return frozenset(value)
    raise InternalContractError(f"Ignore must be a string or a collection of strings, got {value!r}")


def parse_links(value: Any) -> LinkMode:
    if isinstance(value, str) and value in LINK_MODES:
        return value
    raise ValidationError(f"Invalid links value {value!r}; expected one of {sorted(LINK_MODES)}")


def parse_mode(value: Any) -> Optional[int]:
    """Accept an int or an octal string such as '0644' or '755'."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid mode {value!r}")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        try:
            mode = int(value, 8)
        except ValueError:
            raise ValidationError(f"Invalid mode {value!r}")
    else:
        raise ValidationError(f"Invalid mode {value!r}")
    if not 0 <= mode <= 0o7777:
        raise ValidationError(f"Mode out of range: {oct(mode)}")
    return mode


def decrement_depth(depth: Optional[Depth]) -> Optional[Depth]:
    """Depth handed to a child one level down; never negative."""
    if depth is None:
        return None
    if math.isinf(depth):
        return depth
    return max(int(depth) - 1, 0)


def recursion_enabled(depth: Optional[Depth]) -> bool:
    return depth is not None and depth > 0


# ---- Models ----

class FileParameters(BaseModel):
    """Validated parameters of a file declaration."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    backup: BackupPolicy = Field(default=True, validate_default=True)
    recurse: Optional[Depth] = None
    links: LinkMode = "ignore"
    ignore: frozenset[str] = frozenset()
    purge: bool = False
    replace: bool = True
    force: bool = False
    linkmaker: bool = False

    @field_validator("path", mode="before")
    @classmethod
    def _path(cls, value: Any) -> str:
        return validate_path(value)

    @field_validator("backup", mode="before")
    @classmethod
    def _backup(cls, value: Any, info: ValidationInfo) -> BackupPolicy:
        if isinstance(value, BackupPolicy):
            return value
        default_suffix = (info.context or {}).get("default_backup_suffix", DEFAULT_BACKUP_SUFFIX)
        return parse_backup(value, default_suffix)

    @field_validator("recurse", mode="before")
    @classmethod
    def _recurse(cls, value: Any) -> Optional[Depth]:
        return parse_recurse(value)

    @field_validator("links", mode="before")
    @classmethod
    def _links(cls, value: Any) -> str:
        return parse_links(value)

    @field_validator("ignore", mode="before")
    @classmethod
    def _ignore(cls, value: Any) -> frozenset[str]:
        return parse_ignore(value)

    @field_validator("purge", "replace", "force", "linkmaker", mode="before")
    @classmethod
    def _flags(cls, value: Any, info: ValidationInfo) -> bool:
        return parse_bool(value, info.field_name)

    @property
    def recurse_enabled(self) -> bool:
        return recursion_enabled(self.recurse)


class DesiredState(BaseModel):
    """Sparse set of declared attributes for a file."""
    model_config = ConfigDict(extra="forbid")

    ensure: Optional[EnsureKind] = None
    content: Optional[Union[str, bytes]] = None
    source: Optional[str] = None
    target: Optional[str] = None
    mode: Optional[int] = None
    owner: Optional[Union[str, int]] = None
    group: Optional[Union[str, int]] = None
    checksum: Optional[ChecksumType] = None

    @model_validator(mode="before")
    @classmethod
    def _ensure_as_link_target(cls, data: Any) -> Any:
        """ensure => '/some/path' means 'a link to /some/path'."""
        if isinstance(data, dict) and isinstance(data.get("ensure"), str) and data["ensure"].startswith(os.sep):
            data = dict(data)
            target = data.pop("ensure")
            if data.get("target") not in (None, target):
                raise ValidationError(f"ensure {target!r} conflicts with target {data['target']!r}")
            data["ensure"] = "link"
            data["target"] = target
        return data

    @field_validator("ensure", mode="before")
    @classmethod
    def _ensure(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bool):
            return "present" if value else "absent"
        if isinstance(value, str) and value in ENSURE_KINDS:
            return value
        raise ValidationError(f"Invalid ensure value {value!r}")

    @field_validator("mode", mode="before")
    @classmethod
    def _mode(cls, value: Any) -> Optional[int]:
        return parse_mode(value)

    @model_validator(mode="after")
    def _content_xor_source(self) -> "DesiredState":
        if self.content is not None and self.source is not None:
            raise ValidationError("You cannot specify both content and a source")
        return self

    def declared(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


PARAMETER_NAMES: Final[frozenset[str]] = frozenset(FileParameters.model_fields)
DESIRED_NAMES: Final[frozenset[str]] = frozenset(DesiredState.model_fields)


@dataclass(frozen=True)
class Declaration:
    """Validated parameters plus desired state for one path."""
    params: FileParameters
    desired: DesiredState

    @property
    def path(self) -> str:
        return self.params.path

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], default_backup_suffix: str = DEFAULT_BACKUP_SUFFIX) -> "Declaration":
        """Parse a raw declaration mapping.

        Raises:
            ValidationError: unknown attribute, malformed value, or conflict
            InternalContractError: ignore value of the wrong type
        """
        unknown = set(raw) - PARAMETER_NAMES - DESIRED_NAMES
        if unknown:
            raise ValidationError(f"Unknown attributes: {', '.join(sorted(unknown))}", path=raw.get("path"))

        param_values = {k: v for k, v in raw.items() if k in PARAMETER_NAMES and v is not None}
        desired_values = {k: v for k, v in raw.items() if k in DESIRED_NAMES and v is not None}
        context = {"default_backup_suffix": default_backup_suffix}
        try:
            params = FileParameters.model_validate(param_values, context=context)
            desired = DesiredState.model_validate(desired_values)
        except ValidationError as e:
            if e.path is None:
                e.path = str(raw.get("path"))
            raise
        except pydantic.ValidationError as e:
            raise ValidationError(str(e), path=str(raw.get("path"))) from e
        return cls(params=params, desired=desired)


# done.
