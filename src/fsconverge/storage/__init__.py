# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/storage/__init__.py

"""Backup stores, source resolution and the file clients behind sources."""

from fsconverge.storage.backup import BackupManager, BucketRegistry, FileBucket
from fsconverge.storage.fileserver import FileServer, SourceDescription
from fsconverge.storage.sources import ClientRegistry, SourceHandle, SourceResolver
from fsconverge.storage.ssh_client import SSHFileClient

__all__ = [
    'BackupManager',
    'BucketRegistry',
    'ClientRegistry',
    'FileBucket',
    'FileServer',
    'SSHFileClient',
    'SourceDescription',
    'SourceHandle',
    'SourceResolver',
]
