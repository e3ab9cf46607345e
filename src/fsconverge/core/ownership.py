# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/ownership.py

"""
Owner/group resolution and the process contexts used while writing files.

Impersonation (seteuid/setegid) only happens when running as root; for any
other user the contexts are no-ops and ownership is left to chown, which
will fail loudly if the process lacks the privilege.
"""

import contextlib
import grp
import os
import pwd
import stat
from typing import Optional, Union

from loguru import logger

from fsconverge.system.exceptions import ValidationError


def running_as_root() -> bool:
    return os.geteuid() == 0


def resolve_uid(owner: Union[str, int, None]) -> Optional[int]:
    """Map a user name or id onto a uid; None stays None."""
    if owner is None:
        return None
    if isinstance(owner, int):
        return owner
    if owner.isdigit():
        return int(owner)
    try:
        return pwd.getpwnam(owner).pw_uid
    except KeyError:
        raise ValidationError(f"Could not find user {owner}")


def resolve_gid(group: Union[str, int, None]) -> Optional[int]:
    """Map a group name or id onto a gid; None stays None."""
    if group is None:
        return None
    if isinstance(group, int):
        return group
    if group.isdigit():
        return int(group)
    try:
        return grp.getgrnam(group).gr_gid
    except KeyError:
        raise ValidationError(f"Could not find group {group}")


def owner_can_write(uid: int, dirpath: str) -> bool:
    """Whether uid may create files in dirpath, judged from its mode bits."""
    if uid == 0:
        return True
    try:
        st = os.stat(dirpath)
    except OSError:
        return False
    if st.st_uid == uid:
        return bool(st.st_mode & stat.S_IWUSR)

    try:
        user = pwd.getpwuid(uid)
        groups = os.getgrouplist(user.pw_name, user.pw_gid)
    except KeyError:
        groups = []
    if st.st_gid in groups:
        return bool(st.st_mode & stat.S_IWGRP)
    return bool(st.st_mode & stat.S_IWOTH)


@contextlib.contextmanager
def with_umask(mask: int):
    """Temporarily replace the process umask."""
    old_mask = os.umask(mask)
    try:
        yield
    finally:
        os.umask(old_mask)


@contextlib.contextmanager
def as_user(uid: Optional[int], gid: Optional[int] = None):
    """Run the block with effective uid/gid switched, when running as root."""
    if not running_as_root() or (uid is None and gid is None):
        yield
        return

    old_euid, old_egid = os.geteuid(), os.getegid()
    if gid is not None:
        os.setegid(gid)
    if uid is not None:
        os.seteuid(uid)
    logger.debug(f"Switched to euid={os.geteuid()} egid={os.getegid()}")
    try:
        yield
    finally:
        os.seteuid(old_euid)
        os.setegid(old_egid)


# done.
