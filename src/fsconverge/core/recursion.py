# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.08
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/recursion.py

"""
Expansion of a directory entity into implicit child entities.

Three passes run in order, each seeing the children of the ones before it:

1. local  - the entries of the directory as it is on disk
2. link   - the entries of the directory the declared link target points at
3. source - the entries of the declared source, from its file client

A child that cannot be created is skipped and reported; its siblings and
the parent carry on.
"""

from __future__ import annotations

import os
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from fsconverge.core.entity import EntityRegistry, FileEntity, LinkEntity
from fsconverge.core.parameters import Depth, decrement_depth
from fsconverge.core.stat_cache import FileKind, stat_path
from fsconverge.storage.fileserver import is_ignored
from fsconverge.storage.sources import SourceResolver
from fsconverge.system.exceptions import (
    ChildCreationError, FSConvergeError, InternalContractError
)

ROOT_RECORD = "/"


@dataclass(frozen=True)
class SkippedChild:
    """A child or subtree recursion could not manage, and why."""
    path: str
    reason: str


@dataclass
class RecursionResult:
    added: list[FileEntity] = field(default_factory=list)
    skipped: list[SkippedChild] = field(default_factory=list)

    def merge(self, other: "RecursionResult") -> "RecursionResult":
        self.added.extend(other.added)
        self.skipped.extend(other.skipped)
        return self

    @property
    def added_paths(self) -> list[str]:
        return [child.path for child in self.added]


class RecursionEngine:
    """Builds the implicit children of recursing entities."""

    def __init__(self, registry: EntityRegistry, resolver: Optional[SourceResolver] = None):
        self.registry = registry
        self.resolver = resolver or SourceResolver(registry.config)

    def recurse(self, entity: FileEntity) -> RecursionResult:
        """Run the local, link and source passes for one entity.

        Per-child problems end up in the result's skipped list. Failing to
        resolve the entity's own source raises SourceResolutionError.
        """
        result = RecursionResult()
        if not entity.params.recurse_enabled:
            return result

        depth = decrement_depth(entity.params.recurse)
        result.merge(self.local_recurse(entity, depth))
        if entity.desired.target is not None:
            result.merge(self.link_recurse(entity, depth))
        if entity.desired.source is not None:
            result.merge(self.source_recurse(entity, depth))

        if result.added:
            logger.debug(f"{entity.path}: added {len(result.added)} children")
        return result

    def _readable_entries(self, directory: str, entity: FileEntity, result: RecursionResult) -> Optional[list[str]]:
        if not os.access(directory, os.R_OK | os.X_OK):
            logger.warning(f"Cannot manage {entity.path}: permission denied")
            result.skipped.append(SkippedChild(entity.path, f"{directory}: permission denied"))
            return None
        try:
            names = os.listdir(directory)
        except PermissionError:
            logger.warning(f"Cannot manage {entity.path}: permission denied")
            result.skipped.append(SkippedChild(entity.path, f"{directory}: permission denied"))
            return None
        return sorted(name for name in names if not is_ignored(name, entity.params.ignore))

    def local_recurse(self, entity: FileEntity, depth: Optional[Depth]) -> RecursionResult:
        """Mirror the entries currently in the entity's directory."""
        result = RecursionResult()
        current = entity.stat(refresh=True)
        if current.kind is FileKind.PERMISSION_DENIED:
            result.skipped.append(SkippedChild(entity.path, "permission denied"))
            return result
        if current.kind is not FileKind.DIRECTORY:
            return result

        names = self._readable_entries(entity.path, entity, result)
        for name in names or []:
            child = self._child(entity, name, True, result, recurse=depth)
            if child is not None and entity.params.purge and child.implicit and not child.purged:
                child.update(ensure="absent")
                child.purged = True
                logger.debug(f"{child.path}: marked for purge")
        return result

    def link_recurse(self, entity: FileEntity, depth: Optional[Depth]) -> RecursionResult:
        """Manage a link to a directory as a directory of links."""
        result = RecursionResult()
        target = entity.desired.target
        target_stat = stat_path(target, follow_links=entity.params.links == "follow")
        if target_stat.kind is FileKind.PERMISSION_DENIED:
            result.skipped.append(SkippedChild(entity.path, f"{target}: permission denied"))
            return result
        if target_stat.kind is not FileKind.DIRECTORY:
            return result

        if entity.desired.ensure != "directory":
            entity.update(ensure="directory", target=target)

        names = self._readable_entries(target, entity, result)
        for name in names or []:
            self._child(entity, name, False, result, recurse=depth, ensure=os.path.join(target, name))
        return result

    def source_recurse(self, entity: FileEntity, depth: Optional[Depth]) -> RecursionResult:
        """Create a child for every entry the source lists one level down."""
        result = RecursionResult()
        base = entity.desired.source.rstrip("/")
        handle = self.resolver.resolve(entity.desired.source)
        listing = handle.client.list(handle.path, entity.params.links, 1, sorted(entity.params.ignore))

        for line in listing.splitlines():
            if not line:
                continue
            entry, _, kind = line.partition("\t")
            if entry == ROOT_RECORD:
                continue
            # bare paths are quoted by the resolver; URIs need the entry quoted here
            child_source = base + entry if base.startswith("/") else base + urllib.parse.quote(entry)
            overrides: dict[str, Any] = {"source": child_source, "ensure": None, "recurse": depth}
            # a kind field equal to the path marks a directory not to descend into
            if kind == entry:
                overrides["recurse"] = None
            self._child(entity, entry.lstrip("/"), False, result, **overrides)
        return result

    def _child(self, parent: FileEntity, name: str, local: bool, result: RecursionResult,
               **overrides: Any) -> Optional[FileEntity]:
        existed = parent.has_child(os.path.join(parent.path, name))
        try:
            child = self.new_child(parent, name, local, **overrides)
        except ChildCreationError as e:
            logger.warning(f"Cannot manage: {e}")
            result.skipped.append(SkippedChild(e.path, str(e)))
            return None
        if child is not None and not existed:
            result.added.append(child)
        return child

    def new_child(self, parent: FileEntity, name: str, local: bool, **overrides: Any) -> Optional[FileEntity]:
        """Create or reuse the child entity at parent.path/name.

        Returns None when another declaration already manages that path.

        Raises:
            InternalContractError: name is absolute
            ChildCreationError: the child's declaration is invalid
        """
        if os.path.isabs(name):
            raise InternalContractError(f"Must pass relative paths to new_child, not {name}", path=parent.path)
        path = os.path.join(parent.path, name)

        args = parent.inherit_args()
        if "recurse" not in overrides and "recurse" in args:
            args["recurse"] = decrement_depth(args["recurse"])
        args.update(overrides)

        entity_class = FileEntity
        source = args.get("source")
        if parent.params.linkmaker and source and not os.path.isdir(source):
            entity_class = LinkEntity
            args = {"ensure": source}
        args["path"] = path

        try:
            existing = self.registry.get(path)
            if existing is not None:
                if not parent.has_child(path):
                    logger.debug(f"Not managing more explicit file {path}")
                    return None
                if not local:
                    existing.update(**{k: v for k, v in args.items() if k != "path"})
                    if existing.purged and existing.desired.ensure != "absent":
                        existing.purged = False
                        logger.debug(f"{path}: has a counterpart, no longer purged")
                return existing
            return self.registry.create_implicit(args, parent, entity_class)
        except InternalContractError:
            raise
        except (FSConvergeError, ValueError, OSError) as e:
            raise ChildCreationError(f"{path}: {e}", path=path) from e


# done.
