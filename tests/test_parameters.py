# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.03
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_parameters.py

import math

import pytest

from fsconverge.core.parameters import (
    BackupKind,
    BackupPolicy,
    Declaration,
    DesiredState,
    FileParameters,
    decrement_depth,
    parse_backup,
    parse_ignore,
    parse_links,
    parse_mode,
    parse_recurse,
    recursion_enabled,
    validate_path,
)
from fsconverge.system.exceptions import InternalContractError, ValidationError


class TestValidatePath:
    @pytest.mark.parametrize("value", ["etc/app.conf", "", "./x", "~/x", None, 42])
    def test_rejects_unqualified(self, value):
        with pytest.raises(ValidationError, match="fully qualified"):
            validate_path(value)

    @pytest.mark.parametrize("value,expected", [
        ("/etc/app.conf", "/etc/app.conf"),
        ("/etc//app.conf", "/etc/app.conf"),
        ("/etc/conf.d/", "/etc/conf.d"),
        ("//srv/x", "/srv/x"),
        ("/", "/"),
    ])
    def test_normalizes(self, value, expected):
        assert validate_path(value) == expected


class TestParseBackup:
    def test_disabled(self):
        assert parse_backup(False) == BackupPolicy.disabled()
        assert parse_backup("false").kind is BackupKind.NONE

    def test_true_means_default_suffix(self):
        policy = parse_backup(True)
        assert policy.kind is BackupKind.SUFFIX
        assert policy.value == ".fsc-bak"
        assert parse_backup("true", ".orig").value == ".orig"

    def test_dotted_string_is_suffix(self):
        assert parse_backup(".bak") == BackupPolicy(BackupKind.SUFFIX, ".bak")

    def test_other_string_is_bucket(self):
        assert parse_backup("main") == BackupPolicy(BackupKind.BUCKET, "main")

    @pytest.mark.parametrize("value", ["", 3, [".bak"], "./bak", ".b/ak"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_backup(value)

    def test_str(self):
        assert str(BackupPolicy.disabled()) == "false"
        assert str(parse_backup(".bak")) == ".bak"


class TestParseRecurse:
    @pytest.mark.parametrize("value", [True, "true", "inf", "INF", math.inf])
    def test_infinite(self, value):
        assert parse_recurse(value) == math.inf

    @pytest.mark.parametrize("value,expected", [
        (False, 0), ("false", 0), (0, 0), (2, 2), ("3", 3), (" 4 ", 4),
    ])
    def test_bounded(self, value, expected):
        assert parse_recurse(value) == expected

    def test_undeclared(self):
        assert parse_recurse(None) is None

    @pytest.mark.parametrize("value", [-1, "-1", "abc", 1.5, [1]])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_recurse(value)


class TestParseOthers:
    def test_ignore(self):
        assert parse_ignore("*.tmp") == frozenset({"*.tmp"})
        assert parse_ignore(["*.tmp", "*.swp"]) == frozenset({"*.tmp", "*.swp"})
        assert parse_ignore(None) == frozenset()
        assert parse_ignore(False) == frozenset()

    @pytest.mark.parametrize("value", [5, ["*.tmp", 3], {"a": 1}])
    def test_ignore_wrong_type_is_contract_error(self, value):
        with pytest.raises(InternalContractError):
            parse_ignore(value)

    def test_links(self):
        assert parse_links("follow") == "follow"
        with pytest.raises(ValidationError):
            parse_links("sometimes")

    @pytest.mark.parametrize("value,expected", [
        ("0644", 0o644), ("755", 0o755), (0o600, 0o600), (None, None),
    ])
    def test_mode(self, value, expected):
        assert parse_mode(value) == expected

    @pytest.mark.parametrize("value", ["999", "rwx", 0o10000, -1, True])
    def test_mode_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_mode(value)


class TestDepth:
    def test_decrement(self):
        assert decrement_depth(math.inf) == math.inf
        assert decrement_depth(3) == 2
        assert decrement_depth(1) == 0
        assert decrement_depth(0) == 0
        assert decrement_depth(None) is None

    def test_two_levels_down(self):
        n = 5
        assert decrement_depth(decrement_depth(n)) == n - 2

    def test_recursion_enabled(self):
        assert not recursion_enabled(None)
        assert not recursion_enabled(0)
        assert recursion_enabled(1)
        assert recursion_enabled(math.inf)


class TestDeclaration:
    def test_defaults(self):
        declaration = Declaration.from_raw({"path": "/etc/app.conf"})
        params = declaration.params
        assert declaration.path == "/etc/app.conf"
        assert params.backup == BackupPolicy(BackupKind.SUFFIX, ".fsc-bak")
        assert params.recurse is None
        assert params.links == "ignore"
        assert params.ignore == frozenset()
        assert params.replace is True
        assert params.purge is False
        assert params.force is False
        assert declaration.desired.declared() == {}

    def test_default_backup_suffix_from_config(self):
        declaration = Declaration.from_raw({"path": "/etc/app.conf"}, default_backup_suffix=".orig")
        assert declaration.params.backup.value == ".orig"

    def test_loose_values_are_parsed(self):
        declaration = Declaration.from_raw({
            "path": "/srv/www/",
            "recurse": "2",
            "purge": "true",
            "ignore": "*.tmp",
            "mode": "0640",
            "ensure": "directory",
        })
        assert declaration.path == "/srv/www"
        assert declaration.params.recurse == 2
        assert declaration.params.purge is True
        assert declaration.params.ignore == frozenset({"*.tmp"})
        assert declaration.desired.mode == 0o640
        assert declaration.params.recurse_enabled

    @pytest.mark.parametrize("extra", [
        {},
        {"mode": "0644"},
        {"ensure": "file", "owner": "root"},
        {"recurse": True, "backup": False},
    ])
    def test_content_and_source_conflict(self, extra):
        raw = {"path": "/etc/app.conf", "content": "x", "source": "/srv/app.conf", **extra}
        with pytest.raises(ValidationError, match="both content and a source") as exc_info:
            Declaration.from_raw(raw)
        assert exc_info.value.path == "/etc/app.conf"

    def test_relative_path_rejected(self):
        with pytest.raises(ValidationError):
            Declaration.from_raw({"path": "etc/app.conf", "content": "x"})

    def test_unknown_attribute(self):
        with pytest.raises(ValidationError, match="Unknown attributes: colour"):
            Declaration.from_raw({"path": "/x", "colour": "blue"})

    def test_absolute_ensure_means_link(self):
        desired = Declaration.from_raw({"path": "/etc/localtime", "ensure": "/usr/share/zoneinfo/UTC"}).desired
        assert desired.ensure == "link"
        assert desired.target == "/usr/share/zoneinfo/UTC"

    def test_boolean_ensure(self):
        assert DesiredState(ensure=True).ensure == "present"
        assert DesiredState(ensure=False).ensure == "absent"

    def test_invalid_checksum_type_is_package_error(self):
        with pytest.raises(ValidationError):
            Declaration.from_raw({"path": "/x", "checksum": "crc32"})

    def test_none_values_are_undeclared(self):
        declaration = Declaration.from_raw({"path": "/x", "recurse": None, "content": None})
        assert declaration.params.recurse is None
        assert declaration.desired.content is None

    def test_parameters_are_frozen(self):
        params = FileParameters(path="/x")
        with pytest.raises(Exception):
            params.path = "/y"
