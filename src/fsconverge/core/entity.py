# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.08
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/entity.py

"""
Managed filesystem objects and the registry that owns them.

The registry is the arena: it holds every entity of a run keyed by path.
An entity owns the ordered mapping of its children; a child refers back to
its parent by path only, resolved through the registry when needed.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Iterator, Optional

from loguru import logger

from fsconverge.config.manager import EngineConfig
from fsconverge.core.checksum import ChecksumCoordinator
from fsconverge.core.parameters import Declaration, DesiredState, FileParameters
from fsconverge.core.stat_cache import StatCache, StatResult
from fsconverge.storage.backup import BackupManager, BucketRegistry
from fsconverge.system.exceptions import InternalContractError, ValidationError

# Declared per path; implicit children never inherit these
NOT_INHERITED = frozenset({"path", "source", "content", "target"})

# Ensure values that describe the parent itself rather than its subtree
_OWN_KINDS = frozenset({"file", "directory", "link"})


class FileEntity:
    """One managed file, directory or link: declared and observed state."""

    kind = "file"

    def __init__(self, raw: dict[str, Any], config: Optional[EngineConfig] = None,
                 buckets: Optional[BucketRegistry] = None, implicit: bool = False,
                 parent_path: Optional[str] = None):
        self.config = config or EngineConfig()
        self.buckets = buckets or BucketRegistry(self.config)
        self.raw = {k: v for k, v in raw.items() if v is not None}
        self.declaration = Declaration.from_raw(self.raw, self.config.default_backup_suffix)
        self.raw["path"] = self.declaration.path
        self.implicit = implicit
        self.parent_path = parent_path
        self.children: dict[str, FileEntity] = {}
        self.purged = False

        self.stat_cache = StatCache(self.path)
        self.checksum = ChecksumCoordinator(self, self._checksum_type())
        self.backup = BackupManager(self.params.backup, self.buckets, self.params.recurse_enabled)

        # Filled in by the reconciler when a source is declared
        self.source_handle = None
        self.source_description = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    @property
    def path(self) -> str:
        return self.declaration.path

    @property
    def params(self) -> FileParameters:
        return self.declaration.params

    @property
    def desired(self) -> DesiredState:
        return self.declaration.desired

    def _checksum_type(self) -> str:
        return self.desired.checksum or self.config.default_checksum

    def stat(self, refresh: bool = False) -> StatResult:
        return self.stat_cache.stat(follow_links=self.params.links == "follow", refresh=refresh)

    def inherit_args(self) -> dict[str, Any]:
        """Declared arguments an implicit child starts from."""
        args = {k: v for k, v in self.raw.items() if k not in NOT_INHERITED}
        if args.get("ensure") in _OWN_KINDS or (isinstance(args.get("ensure"), str) and args["ensure"].startswith(os.sep)):
            del args["ensure"]
        if self.params.recurse is not None:
            args["recurse"] = self.params.recurse
        return args

    def update(self, **values: Any) -> bool:
        """Re-declare with the given values changed; None removes a value.

        Only values that differ from the current declaration are applied.
        Returns whether anything changed.
        """
        changed = {k: v for k, v in values.items() if self.raw.get(k) != v}
        if not changed:
            return False
        if "path" in changed:
            raise InternalContractError(f"Cannot change the path of {self.path}", path=self.path)

        raw = dict(self.raw)
        for key, value in changed.items():
            if value is None:
                raw.pop(key, None)
            else:
                raw[key] = value
        self.declaration = Declaration.from_raw(raw, self.config.default_backup_suffix)
        self.raw = raw

        self.checksum.algorithm = self._checksum_type()
        self.backup = BackupManager(self.params.backup, self.buckets, self.params.recurse_enabled)
        logger.debug(f"{self.path}: updated {', '.join(sorted(changed))}")
        return True

    def add_child(self, child: "FileEntity") -> None:
        if child.path in self.children:
            raise InternalContractError(f"{child.path} is already a child of {self.path}", path=child.path)
        self.children[child.path] = child

    def has_child(self, path: str) -> bool:
        return path in self.children

    def iter_tree(self) -> Iterator["FileEntity"]:
        """This entity and its descendants, depth first, parents before children."""
        yield self
        for child in self.children.values():
            yield from child.iter_tree()


class LinkEntity(FileEntity):
    """A file entity that must be a symbolic link; links are never followed."""

    kind = "link"

    def __init__(self, raw: dict[str, Any], **kwargs):
        super().__init__(raw, **kwargs)
        if self.desired.ensure != "link" or not self.desired.target:
            raise ValidationError(f"Link entity {self.path} needs a link target", path=self.path)

    def stat(self, refresh: bool = False) -> StatResult:
        return self.stat_cache.stat(follow_links=False, refresh=refresh)


class EntityRegistry:
    """Arena of the entities in one run, keyed by path."""

    def __init__(self, config: Optional[EngineConfig] = None, buckets: Optional[BucketRegistry] = None):
        self.config = config or EngineConfig()
        self.buckets = buckets or BucketRegistry(self.config)
        self._entities: dict[str, FileEntity] = {}
        self._lock = threading.RLock()

    def __contains__(self, path: str) -> bool:
        return path in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[FileEntity]:
        return iter(list(self._entities.values()))

    def get(self, path: str) -> Optional[FileEntity]:
        return self._entities.get(path)

    def parent_of(self, entity: FileEntity) -> Optional[FileEntity]:
        if entity.parent_path is None:
            return None
        return self._entities.get(entity.parent_path)

    def declare(self, **raw: Any) -> FileEntity:
        """Create an explicit entity from a raw declaration.

        Raises:
            ValidationError: malformed declaration, or the path is already declared
        """
        entity = FileEntity(raw, config=self.config, buckets=self.buckets)
        with self._lock:
            if entity.path in self._entities:
                raise ValidationError(f"Duplicate declaration for {entity.path}", path=entity.path)
            self._entities[entity.path] = entity
        logger.debug(f"Declared {entity.path}")
        return entity

    def create_implicit(self, raw: dict[str, Any], parent: FileEntity, entity_class: type = FileEntity) -> FileEntity:
        """Create a recursion-discovered entity and attach it to parent."""
        entity = entity_class(raw, config=self.config, buckets=self.buckets,
                              implicit=True, parent_path=parent.path)
        with self._lock:
            if entity.path in self._entities:
                raise InternalContractError(f"{entity.path} is already managed", path=entity.path)
            self._entities[entity.path] = entity
            parent.add_child(entity)
        return entity

    def roots(self) -> list[FileEntity]:
        """Explicit entities, every parent directory before what it contains."""
        explicit = [e for e in self._entities.values() if not e.implicit]
        return sorted(explicit, key=lambda e: [part for part in e.path.split(os.sep) if part])


# done.
