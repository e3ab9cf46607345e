# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.09
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/reconciler.py

"""
One reconciliation pass over the declared entities.

For every explicit entity, parents first, and then depth first through the
children recursion gives it:

    retrieve  - describe the source, expand children, observe stat and checksum
    sync      - ensure, content or source, mode, owner/group

A failing entity is reported and the walk continues with its siblings. Only
InternalContractError stops the pass, since it means the engine itself is
wrong.
"""

from __future__ import annotations

import os
import shutil
from typing import Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field

from fsconverge.config.manager import EngineConfig
from fsconverge.core.entity import EntityRegistry, FileEntity
from fsconverge.core.ownership import resolve_gid, resolve_uid, with_umask
from fsconverge.core.parameters import BackupKind
from fsconverge.core.recursion import RecursionEngine
from fsconverge.core.stat_cache import FileKind
from fsconverge.core.writer import Writer
from fsconverge.storage.sources import SourceResolver
from fsconverge.system.exceptions import (
    FSConvergeError, InternalContractError, SourceResolutionError, StaleArtifactError, WriteError
)

DEFAULT_DIRECTORY_MODE = 0o777  # before umask


# ---- Report models ----

class Change(BaseModel):
    """One attribute brought into sync (or, under noop, that would be)."""
    path: str
    attribute: Literal["ensure", "content", "mode", "owner", "group"]
    action: str
    detail: Optional[str] = None


class Failure(BaseModel):
    path: str
    error: str
    message: str


class Skip(BaseModel):
    path: str
    reason: str


class ReconcileReport(BaseModel):
    """Everything a pass changed, failed to do, or skipped."""
    noop: bool = False
    changes: list[Change] = Field(default_factory=list)
    failures: list[Failure] = Field(default_factory=list)
    skipped: list[Skip] = Field(default_factory=list)
    entities: int = 0

    @property
    def writes(self) -> list[Change]:
        """Content writes, the changes that go through the Writer."""
        return [c for c in self.changes if c.attribute == "content"]

    @property
    def in_sync(self) -> bool:
        return not self.changes and not self.failures

    def change(self, path: str, attribute: str, action: str, detail: Optional[str] = None) -> None:
        self.changes.append(Change(path=path, attribute=attribute, action=action, detail=detail))
        logger.info(f"{path}: {attribute} {action}" + (f" ({detail})" if detail else ""))


# ---- Reconciler ----

class Reconciler:
    """Brings every declared entity to its desired state, once."""

    def __init__(self, registry: EntityRegistry, config: Optional[EngineConfig] = None,
                 resolver: Optional[SourceResolver] = None, noop: bool = False):
        self.registry = registry
        self.config = config or registry.config
        self.resolver = resolver or SourceResolver(self.config)
        self.engine = RecursionEngine(registry, self.resolver)
        self.writer = Writer(self.config)
        self.noop = noop

    def run(self) -> ReconcileReport:
        report = ReconcileReport(noop=self.noop)
        for entity in self.registry.roots():
            self._walk(entity, report)
        logger.debug(f"Pass done: {len(report.changes)} changes, {len(report.failures)} failures, "
                     f"{len(report.skipped)} skipped")
        return report

    def _walk(self, entity: FileEntity, report: ReconcileReport) -> None:
        report.entities += 1
        try:
            self.retrieve(entity, report)
            self.sync(entity, report)
        except InternalContractError:
            raise
        except (FSConvergeError, OSError) as e:
            logger.error(f"{entity.path}: {e}")
            report.failures.append(Failure(path=entity.path, error=type(e).__name__, message=str(e)))
            return

        for child in list(entity.children.values()):
            self._walk(child, report)

    # ---- retrieve ----

    def retrieve(self, entity: FileEntity, report: Optional[ReconcileReport] = None) -> None:
        """Observe current state: source description, children, stat, checksum."""
        if entity.desired.source is not None:
            handle = self.resolver.resolve(entity.desired.source)
            entity.source_handle = handle
            entity.source_description = handle.client.describe(
                handle.path, entity.params.links, entity.checksum.algorithm
            )
            if entity.source_description is None:
                raise SourceResolutionError(f"Could not describe source {entity.desired.source}",
                                            path=entity.path)

        if entity.params.recurse is not None:
            result = self.engine.recurse(entity)
            if report is not None:
                report.skipped.extend(Skip(path=s.path, reason=s.reason) for s in result.skipped)

        entity.stat(refresh=True)
        entity.checksum.set_checksum()

    # ---- sync ----

    def desired_kind(self, entity: FileEntity) -> Optional[str]:
        ensure = entity.desired.ensure
        if ensure in ("absent", "directory", "link", "file"):
            return ensure
        if entity.source_description is not None:
            return entity.source_description.kind
        if entity.desired.content is not None:
            return "file"
        return ensure  # "present" or None

    def sync(self, entity: FileEntity, report: ReconcileReport) -> None:
        kind = self.desired_kind(entity)
        if kind == "absent":
            self._sync_absent(entity, report)
            return
        if kind == "directory":
            self._sync_directory(entity, report)
        elif kind == "link":
            target = entity.desired.target
            if target is None and entity.source_description is not None:
                target = entity.source_description.target
            self._sync_link(entity, target, report)
        elif kind in ("file", "present"):
            self._sync_file(entity, report)

        current = entity.stat()
        if current.exists and current.kind is not FileKind.LINK:
            self._sync_mode(entity, report)
            self._sync_ownership(entity, report)

    def _clear_for(self, entity: FileEntity, wanted: str, report: ReconcileReport) -> bool:
        """Back up and remove whatever is at the path so a `wanted` can take its place.

        Returns False when the path should be left alone.
        """
        current = entity.stat()
        path = entity.path
        if current.kind is FileKind.DIRECTORY and not entity.params.force:
            raise WriteError(f"Could not replace directory {path} with a {wanted}; use force", path=path)
        if not entity.params.replace:
            logger.debug(f"{path}: exists and replace is off, leaving it")
            return False

        report.change(path, "ensure", f"replaced {current.kind.value} with {wanted}")
        if self.noop:
            return False
        if not entity.backup.handle_backup(path):
            raise StaleArtifactError(f"Could not back up {path}", path=path)
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        elif os.path.lexists(path):
            os.unlink(path)
        entity.stat_cache.invalidate()
        return True

    def _sync_absent(self, entity: FileEntity, report: ReconcileReport) -> None:
        current = entity.stat()
        path = entity.path
        if not current.exists:
            return

        bucketed = entity.params.backup.kind is BackupKind.BUCKET and not entity.params.recurse_enabled
        if current.kind is FileKind.DIRECTORY and not (entity.params.force or bucketed):
            raise WriteError(f"Could not remove directory {path}; use force", path=path)

        report.change(path, "ensure", "removed" + (" (purged)" if entity.purged else ""))
        if self.noop:
            return
        if not entity.backup.handle_backup(path):
            raise StaleArtifactError(f"Could not back up {path}", path=path)
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        elif os.path.lexists(path):
            os.unlink(path)
        entity.stat_cache.invalidate()

    def _sync_directory(self, entity: FileEntity, report: ReconcileReport) -> None:
        current = entity.stat()
        if current.kind is FileKind.DIRECTORY:
            return
        if current.exists and not self._clear_for(entity, "directory", report):
            return
        if not current.exists:
            report.change(entity.path, "ensure", "created directory")
        if self.noop:
            return

        mode = entity.desired.mode
        if mode is not None:
            with with_umask(0):
                os.mkdir(entity.path, mode)
        else:
            os.mkdir(entity.path, DEFAULT_DIRECTORY_MODE)
        entity.stat_cache.invalidate()

    def _sync_link(self, entity: FileEntity, target: Optional[str], report: ReconcileReport) -> None:
        if not target:
            raise WriteError(f"No link target for {entity.path}", path=entity.path)
        current = entity.stat_cache.stat(follow_links=False, refresh=True)
        if current.kind is FileKind.LINK and current.link_target == target:
            return
        if current.exists and not self._clear_for(entity, "link", report):
            return
        if not current.exists:
            report.change(entity.path, "ensure", "created link", detail=f"-> {target}")
        if self.noop:
            return

        os.symlink(target, entity.path)
        entity.stat_cache.invalidate()
        # links have no content of their own; re-read what they point at
        entity.checksum.set_checksum()

    def _sync_file(self, entity: FileEntity, report: ReconcileReport) -> None:
        path = entity.path
        current = entity.stat()
        if current.kind is FileKind.DIRECTORY:
            if not self._clear_for(entity, "file", report):
                return
            current = entity.stat()
        elif current.kind is FileKind.OTHER:
            raise WriteError(f"Will not replace {current.file_type} {path}", path=path)

        desired = entity.desired
        if desired.content is not None:
            desired_sum = entity.checksum.compute_content(desired.content)
        elif entity.source_description is not None:
            desired_sum = entity.source_description.checksum
        elif current.exists:
            return  # ensure file/present, nothing about the contents declared
        else:
            desired_sum = entity.checksum.compute_content(b"")

        if entity.checksum.in_sync(desired_sum):
            return
        if current.kind is FileKind.FILE and not entity.params.replace:
            logger.debug(f"{path}: exists and replace is off, leaving contents")
            return

        action = "created" if not current.exists else "changed"
        report.change(path, "content", action, detail=f"{entity.checksum.value} -> {desired_sum}")
        if self.noop:
            return

        if desired.content is not None:
            content = desired.content
        elif entity.source_description is not None:
            handle = entity.source_handle
            content = handle.client.retrieve(handle.path, entity.params.links)
        else:
            content = b""
        self.writer.write(entity, content)

    def _sync_mode(self, entity: FileEntity, report: ReconcileReport) -> None:
        mode = entity.desired.mode
        if mode is None and entity.source_description is not None:
            # sourced files take the source's mode unless one is declared
            mode = entity.source_description.mode
        if mode is None:
            return
        current = entity.stat()
        if current.mode == mode:
            return
        report.change(entity.path, "mode", "changed", detail=f"{oct(current.mode or 0)} -> {oct(mode)}")
        if self.noop:
            return
        os.chmod(entity.path, mode)
        entity.stat_cache.invalidate()

    def _sync_ownership(self, entity: FileEntity, report: ReconcileReport) -> None:
        uid = resolve_uid(entity.desired.owner)
        gid = resolve_gid(entity.desired.group)
        current = entity.stat()
        if uid is not None and current.uid != uid:
            report.change(entity.path, "owner", "changed", detail=f"{current.uid} -> {uid}")
        else:
            uid = None
        if gid is not None and current.gid != gid:
            report.change(entity.path, "group", "changed", detail=f"{current.gid} -> {gid}")
        else:
            gid = None
        if self.noop or (uid is None and gid is None):
            return
        os.lchown(entity.path, -1 if uid is None else uid, -1 if gid is None else gid)
        entity.stat_cache.invalidate()


# done.
