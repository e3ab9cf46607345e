# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.07
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/storage/sources.py

"""
Source URI resolution.

A declared source is a bare absolute path, a file:// URI or an
fsc://host[:port]/mount/rest URI. Resolution binds it to a file client and
rewrites the path relative to that client's mounts:

    /etc/app.conf                   -> local server, /localhost/etc/app.conf
    file:///etc/app.conf            -> local server, /localhost/etc/app.conf
    fsc://cfg.example.org/conf/app  -> SSH client for cfg.example.org:22, /conf/app
"""

from __future__ import annotations

import re
import threading
import urllib.parse
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from fsconverge.config.manager import EngineConfig
from fsconverge.storage.fileserver import LOCAL_MOUNT, FileClient, FileServer
from fsconverge.storage.ssh_client import SSHFileClient
from fsconverge.system.exceptions import FSConvergeError, SourceResolutionError

FILE_SCHEME = "file"
REMOTE_SCHEME = "fsc"

_MOUNT_RE = re.compile(r"^/(\w+)")


@dataclass(frozen=True)
class SourceHandle:
    """A source bound to the client that serves it."""
    client: FileClient
    mount: str
    path: str  # /mount/rest, as the client expects it
    local: bool = False


ClientFactory = Callable[[str, int, EngineConfig], FileClient]


def _default_factory(host: str, port: int, config: EngineConfig) -> FileClient:
    return SSHFileClient(host, port, config)


class ClientRegistry:
    """Run-scoped cache of remote file clients, one per (host, port).

    Creation happens under a lock so concurrent first use never builds two
    clients for one origin. A failed creation is remembered and re-raised
    for every later request for the same origin.
    """

    def __init__(self, config: Optional[EngineConfig] = None, factory: Optional[ClientFactory] = None):
        self.config = config or EngineConfig()
        self.factory = factory or _default_factory
        self._clients: dict[tuple[str, int], FileClient] = {}
        self._failures: dict[tuple[str, int], FSConvergeError] = {}
        self._lock = threading.Lock()

    def get(self, host: str, port: int) -> FileClient:
        key = (host, port)
        with self._lock:
            if key in self._clients:
                return self._clients[key]
            if key in self._failures:
                raise self._failures[key]
            try:
                client = self.factory(host, port, self.config)
            except FSConvergeError as e:
                self._failures[key] = e
                raise
            self._clients[key] = client
            logger.debug(f"Created file client for {host}:{port}")
            return client

    def __len__(self) -> int:
        return len(self._clients)

    def close_all(self) -> None:
        with self._lock:
            for key, client in self._clients.items():
                close = getattr(client, "close", None)
                if close is not None:
                    close()
                    logger.debug(f"Closed file client for {key[0]}:{key[1]}")
            self._clients.clear()
            self._failures.clear()


class SourceResolver:
    """Binds source URIs to file clients.

    All file:// sources share the resolver's single local FileServer, which
    serves 'localhost' at / plus any mounts named in the engine config.
    """

    def __init__(self, config: Optional[EngineConfig] = None, clients: Optional[ClientRegistry] = None):
        self.config = config or EngineConfig()
        self.clients = clients or ClientRegistry(self.config)
        self.local_server = FileServer()
        for name, root in self.config.mounts.items():
            self.local_server.mount(name, str(root))

    def resolve(self, source: str) -> SourceHandle:
        """Bind a source to a client and a mount-relative path.

        Raises:
            SourceResolutionError: unsupported scheme, unparsable URI, or
            a remote path without a mount segment
        """
        if not isinstance(source, str) or not source.strip():
            raise SourceResolutionError(f"Invalid source {source!r}")

        if source.startswith("/"):
            source = f"{FILE_SCHEME}://{LOCAL_MOUNT}" + urllib.parse.quote(source)

        try:
            uri = urllib.parse.urlsplit(source)
            port = uri.port
        except ValueError as e:
            raise SourceResolutionError(f"Could not parse source {source}: {e}", path=source) from e

        if uri.scheme == FILE_SCHEME:
            path = _collapse(f"/{LOCAL_MOUNT}/" + urllib.parse.unquote(uri.path))
            return SourceHandle(client=self.local_server, mount=LOCAL_MOUNT, path=path, local=True)

        if uri.scheme == REMOTE_SCHEME:
            if not uri.hostname:
                raise SourceResolutionError(f"No host in source {source}", path=source)
            path = _collapse(urllib.parse.unquote(uri.path))
            match = _MOUNT_RE.match(path)
            if not match:
                raise SourceResolutionError(f"No mount in source {source}", path=source)
            client = self.clients.get(uri.hostname, port or self.config.source_port)
            return SourceHandle(client=client, mount=match.group(1), path=path)

        raise SourceResolutionError(f"Protocol {uri.scheme or '(none)'} is not supported", path=source)

    def close(self) -> None:
        self.clients.close_all()


def _collapse(path: str) -> str:
    return re.sub(r"/{2,}", "/", path)


# done.
