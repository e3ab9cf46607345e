# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.08
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_recursion.py

"""
Tests for expanding directory entities into implicit children: local,
link and source passes, depth accounting, ignore, purge, and isolation of
per-child failures.
"""

import math
import os
from unittest.mock import patch

import pytest

from fsconverge.core.entity import EntityRegistry, LinkEntity
from fsconverge.core.recursion import RecursionEngine
from fsconverge.storage.sources import SourceResolver
from fsconverge.system.exceptions import InternalContractError, ValidationError


def names(result):
    return sorted(os.path.basename(path) for path in result.added_paths)


class TestLocalRecursion:
    def test_recurse_one_creates_direct_children_only(self, registry, engine, nested_tree):
        d = registry.declare(path=str(nested_tree), recurse=1)
        result = engine.recurse(d)

        assert names(result) == ["a", "top.txt"]
        assert registry.get(str(nested_tree / "a" / "b")) is None
        child = registry.get(str(nested_tree / "a"))
        assert child.params.recurse == 0
        assert engine.recurse(child).added == []

    def test_depth_two_levels_down(self, registry, engine, nested_tree):
        n = 3
        d = registry.declare(path=str(nested_tree), recurse=n)
        engine.recurse(d)
        a = registry.get(str(nested_tree / "a"))
        engine.recurse(a)
        b = registry.get(str(nested_tree / "a" / "b"))
        assert b.params.recurse == n - 2

        engine.recurse(b)
        c = registry.get(str(nested_tree / "a" / "b" / "c"))
        assert c.params.recurse == 0
        assert engine.recurse(c).added == []
        assert registry.get(str(nested_tree / "a" / "b" / "c" / "deep.txt")) is None

    def test_unbounded_depth_stays_unbounded(self, registry, engine, nested_tree):
        d = registry.declare(path=str(nested_tree), recurse=True)
        engine.recurse(d)
        assert registry.get(str(nested_tree / "a")).params.recurse == math.inf

    def test_ignore(self, registry, engine, tmp_path):
        d = tmp_path / "d"
        d.mkdir()
        (d / "a.txt").write_text("a")
        (d / "b.tmp").write_text("b")
        entity = registry.declare(path=str(d), recurse=True, ignore=["*.tmp"])
        assert names(engine.recurse(entity)) == ["a.txt"]

    def test_children_inherit_parameters_not_contents(self, registry, engine, tmp_path):
        d = tmp_path / "d"
        d.mkdir()
        (d / "a.txt").write_text("a")
        entity = registry.declare(path=str(d), recurse=True, ensure="directory", mode="0640",
                                  backup=False, owner="root")
        engine.recurse(entity)
        child = registry.get(str(d / "a.txt"))
        assert child.implicit
        assert child.parent_path == str(d)
        assert child.desired.mode == 0o640
        assert child.desired.owner == "root"
        assert child.desired.ensure is None
        assert not child.params.backup.enabled
        assert registry.parent_of(child) is entity

    def test_no_recursion_when_not_declared(self, registry, engine, nested_tree):
        d = registry.declare(path=str(nested_tree), purge=True)
        assert engine.recurse(d).added == []
        assert len(registry) == 1

    def test_not_a_directory(self, registry, engine, tmp_path):
        f = tmp_path / "f"
        f.write_text("x")
        assert engine.recurse(registry.declare(path=str(f), recurse=True)).added == []

    def test_unreadable_directory_is_skipped(self, registry, engine, nested_tree):
        d = registry.declare(path=str(nested_tree), recurse=True)
        with patch("fsconverge.core.recursion.os.access", return_value=False):
            result = engine.recurse(d)
        assert result.added == []
        assert result.skipped[0].path == str(nested_tree)
        assert "permission denied" in result.skipped[0].reason

    def test_explicit_declaration_wins(self, registry, engine, tmp_path):
        d = tmp_path / "d"
        d.mkdir()
        (d / "mine.conf").write_text("x")
        explicit = registry.declare(path=str(d / "mine.conf"), mode="0600")
        entity = registry.declare(path=str(d), recurse=True, mode="0644")
        engine.recurse(entity)
        assert not entity.has_child(str(d / "mine.conf"))
        assert registry.get(str(d / "mine.conf")) is explicit
        assert explicit.desired.mode == 0o600

    def test_second_pass_reuses_children(self, registry, engine, nested_tree):
        d = registry.declare(path=str(nested_tree), recurse=1)
        first = engine.recurse(d)
        second = engine.recurse(d)
        assert len(first.added) == 2
        assert second.added == []
        assert len(d.children) == 2


class TestPurge:
    def test_unmanaged_children_marked_absent(self, registry, engine, tmp_path):
        d = tmp_path / "d"
        d.mkdir()
        (d / "stale.txt").write_text("x")
        (d / "kept.txt").write_text("x")
        kept = registry.declare(path=str(d / "kept.txt"), content="x")
        entity = registry.declare(path=str(d), recurse=True, purge=True)

        engine.recurse(entity)
        stale = registry.get(str(d / "stale.txt"))
        assert stale.purged
        assert stale.desired.ensure == "absent"
        assert not kept.purged
        assert kept.desired.ensure is None

    def test_remote_counterpart_is_not_purged(self, registry, engine, fake_client, tmp_path):
        d = tmp_path / "d"
        d.mkdir()
        (d / "x.txt").write_text("local copy")
        (d / "stale.txt").write_text("x")
        fake_client.listing = "/\tdirectory\n/x.txt\tfile"
        entity = registry.declare(path=str(d), recurse=True, purge=True, source="fsc://cfg/conf")

        engine.recurse(entity)
        assert not registry.get(str(d / "x.txt")).purged
        assert registry.get(str(d / "x.txt")).desired.ensure is None
        assert registry.get(str(d / "stale.txt")).purged


class TestLinkRecursion:
    def test_link_to_directory_becomes_directory_of_links(self, registry, engine, tmp_path):
        target = tmp_path / "target"
        target.mkdir()
        (target / "one").write_text("1")
        (target / "two").write_text("2")
        d = registry.declare(path=str(tmp_path / "d"), ensure=str(target), recurse=True)

        result = engine.recurse(d)
        assert d.desired.ensure == "directory"
        assert names(result) == ["one", "two"]
        child = registry.get(str(tmp_path / "d" / "one"))
        assert child.desired.ensure == "link"
        assert child.desired.target == str(target / "one")

    def test_link_to_file_does_not_recurse(self, registry, engine, tmp_path):
        target = tmp_path / "target"
        target.write_text("x")
        d = registry.declare(path=str(tmp_path / "d"), ensure=str(target), recurse=True)
        assert engine.recurse(d).added == []
        assert d.desired.ensure == "link"


class TestSourceRecursion:
    def test_listing_creates_children_with_rewritten_sources(self, registry, engine, fake_client, tmp_path):
        fake_client.listing = "/\t/\n/x.txt\tx.txt\n/sub\tsub\n"
        d = registry.declare(path=str(tmp_path / "d"), recurse=2, source="fsc://cfg/conf")

        result = engine.recurse(d)
        assert names(result) == ["sub", "x.txt"]
        x = registry.get(str(tmp_path / "d" / "x.txt"))
        sub = registry.get(str(tmp_path / "d" / "sub"))
        assert x.desired.source == "fsc://cfg/conf/x.txt"
        assert sub.desired.source == "fsc://cfg/conf/sub"
        assert x.params.recurse == 1
        assert sub.params.recurse == 1
        assert fake_client.list_calls == [("/conf", "ignore", 1, ())]

    def test_kind_equal_to_path_stops_descent(self, registry, engine, fake_client, tmp_path):
        fake_client.listing = "/\tdirectory\n/x.txt\tfile\n/sub\t/sub"
        d = registry.declare(path=str(tmp_path / "d"), recurse=True, source="fsc://cfg/conf")
        engine.recurse(d)
        assert registry.get(str(tmp_path / "d" / "sub")).params.recurse is None
        assert registry.get(str(tmp_path / "d" / "x.txt")).params.recurse == math.inf

    def test_ensure_is_not_inherited(self, registry, engine, fake_client, tmp_path):
        d = tmp_path / "d"
        d.mkdir()
        (d / "x.txt").write_text("x")
        fake_client.listing = "/\tdirectory\n/x.txt\tfile"
        entity = registry.declare(path=str(d), recurse=True, ensure="present", source="fsc://cfg/conf")
        engine.recurse(entity)
        assert registry.get(str(d / "x.txt")).desired.ensure is None

    def test_ignore_passed_to_listing(self, registry, engine, fake_client, tmp_path):
        d = registry.declare(path=str(tmp_path / "d"), recurse=True, source="fsc://cfg/conf",
                             ignore=["*.tmp", ".git"], links="manage")
        engine.recurse(d)
        assert fake_client.list_calls == [("/conf", "manage", 1, ("*.tmp", ".git"))]

    def test_uri_reserved_characters_in_names_are_quoted(self, registry, engine, fake_client, tmp_path):
        fake_client.listing = "/\tdirectory\n/a#b.txt\tfile\n/p%41.txt\tfile\n/q?x.txt\tfile"
        d = registry.declare(path=str(tmp_path / "d"), recurse=True, source="fsc://cfg/conf")

        assert names(engine.recurse(d)) == ["a#b.txt", "p%41.txt", "q?x.txt"]
        assert registry.get(str(tmp_path / "d" / "a#b.txt")).desired.source == "fsc://cfg/conf/a%23b.txt"
        assert registry.get(str(tmp_path / "d" / "p%41.txt")).desired.source == "fsc://cfg/conf/p%2541.txt"
        assert registry.get(str(tmp_path / "d" / "q?x.txt")).desired.source == "fsc://cfg/conf/q%3Fx.txt"

    def test_local_source_directory(self, registry, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "a.conf").write_text("a")
        engine = RecursionEngine(registry, SourceResolver(registry.config))
        d = registry.declare(path=str(tmp_path / "d"), recurse=True, source=str(src))
        assert names(engine.recurse(d)) == ["a.conf"]
        assert registry.get(str(tmp_path / "d" / "a.conf")).desired.source == str(src / "a.conf")

    def test_linkmaker_makes_link_entities(self, registry, tmp_path):
        src = tmp_path / "src"
        (src / "sub").mkdir(parents=True)
        (src / "a.conf").write_text("a")
        engine = RecursionEngine(registry, SourceResolver(registry.config))
        d = registry.declare(path=str(tmp_path / "d"), recurse=True, source=str(src), linkmaker=True)
        engine.recurse(d)

        link = registry.get(str(tmp_path / "d" / "a.conf"))
        assert isinstance(link, LinkEntity)
        assert link.desired.target == str(src / "a.conf")
        assert not isinstance(registry.get(str(tmp_path / "d" / "sub")), LinkEntity)


class TestNewChild:
    def test_absolute_name_is_contract_violation(self, registry, engine, tmp_path):
        d = registry.declare(path=str(tmp_path), recurse=True)
        with pytest.raises(InternalContractError):
            engine.new_child(d, "/etc/passwd", True)

    def test_failing_child_is_skipped_siblings_continue(self, engine_config, resolver, tmp_path):
        d = tmp_path / "d"
        d.mkdir()
        for name in ("a", "bad", "c"):
            (d / name).write_text(name)

        class PickyRegistry(EntityRegistry):
            def create_implicit(self, raw, parent, entity_class=None):
                if raw["path"].endswith("/bad"):
                    raise ValidationError("not today", path=raw["path"])
                return super().create_implicit(raw, parent)

        picky = PickyRegistry(engine_config)
        entity = picky.declare(path=str(d), recurse=True)
        result = RecursionEngine(picky, resolver).recurse(entity)

        assert names(result) == ["a", "c"]
        assert [s.path for s in result.skipped] == [str(d / "bad")]
        assert "not today" in result.skipped[0].reason
