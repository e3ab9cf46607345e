# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/storage/ssh_client.py

"""
File client for fsc:// sources, served over SSH/SFTP.

The remote host needs nothing but sshd: listings, descriptions and content
are computed client-side by a FileServer running over an SFTP filesystem
adapter. Mount '/name/...' maps to <remote_mount_root>/name on the host.
"""

from __future__ import annotations

import posixpath
import re
import socket
from typing import BinaryIO, Iterable, Optional, Union

import paramiko
from loguru import logger

from fsconverge.config.manager import EngineConfig
from fsconverge.core.retry import retry_with_backoff
from fsconverge.storage.fileserver import FileServer, SourceDescription
from fsconverge.system.exceptions import (
    AuthenticationError, NetworkError, SourceResolutionError, TransportError,
)


class SFTPFS:
    """Filesystem adapter over a paramiko SFTP session."""

    def __init__(self, sftp: paramiko.SFTPClient):
        self.sftp = sftp

    def stat(self, path: str):
        return self.sftp.stat(path)

    def lstat(self, path: str):
        return self.sftp.lstat(path)

    def listdir(self, path: str) -> list[str]:
        return self.sftp.listdir(path)

    def readlink(self, path: str) -> str:
        return self.sftp.readlink(path)

    def open(self, path: str) -> BinaryIO:
        return self.sftp.open(path, 'rb')


class RemoteFileServer(FileServer):
    """FileServer where every mount name maps to a directory under one root."""

    def __init__(self, fs, root: str):
        super().__init__(fs, mounts={})
        self.root = root

    def mount_root(self, mount: str, path: str) -> str:
        if not re.fullmatch(r"\w+", mount):
            raise SourceResolutionError(f"Invalid mount {mount!r} in {path}", path=path)
        return posixpath.join(self.root, mount)


class SSHFileClient:
    """Listing and content-fetch client for one host:port origin."""

    def __init__(self, host: str, port: int, config: Optional[EngineConfig] = None):
        self.host = host
        self.port = port
        self.config = config or EngineConfig()
        self._ssh: Optional[paramiko.SSHClient] = None
        self._server: Optional[FileServer] = None
        self._failure: Optional[TransportError] = None  # re-raised until close()

    def __repr__(self) -> str:
        return f"SSHFileClient({self.host}:{self.port})"

    @retry_with_backoff(operation_name="SSH connect")
    def _connect(self) -> paramiko.SSHClient:
        ssh_client = paramiko.SSHClient()
        ssh_client.load_system_host_keys()
        ssh_client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        connect_kwargs = {
            "port": self.port,
            "timeout": self.config.ssh.timeout,
        }
        if self.config.ssh.username:
            connect_kwargs["username"] = self.config.ssh.username
        if self.config.ssh.key_path:
            connect_kwargs["key_filename"] = str(self.config.ssh.key_path)

        try:
            ssh_client.connect(self.host, **connect_kwargs)
        except paramiko.AuthenticationException as e:
            raise AuthenticationError(f"Authentication to {self.host}:{self.port} failed: {e}")
        except (paramiko.SSHException, socket.error) as e:
            raise NetworkError(f"Could not connect to {self.host}:{self.port}: {e}")
        logger.debug(f"Connected to {self.host}:{self.port}")
        return ssh_client

    @property
    def server(self) -> FileServer:
        if self._failure is not None:
            raise self._failure
        if self._server is None:
            try:
                self._ssh = self._connect()
            except TransportError as e:
                self._failure = e
                raise
            sftp = self._ssh.open_sftp()
            self._server = RemoteFileServer(SFTPFS(sftp), str(self.config.remote_mount_root))
        return self._server

    def list(self, path: str, links: str = "ignore", recurse: Union[bool, int, float] = False,
             ignore: Iterable[str] = ()) -> str:
        return self.server.list(path, links, recurse, ignore)

    def describe(self, path: str, links: str = "ignore", checksum_type: str = "md5") -> Optional[SourceDescription]:
        return self.server.describe(path, links, checksum_type)

    def retrieve(self, path: str, links: str = "ignore") -> bytes:
        return self.server.retrieve(path, links)

    def close(self) -> None:
        if self._ssh is not None:
            self._ssh.close()
        self._ssh = None
        self._server = None
        self._failure = None


# done.
