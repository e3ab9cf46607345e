# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.02
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/system/exceptions.py

"""
fsconverge exception classes.

Every failure the engine reports carries the offending path where one is
known. The classes map onto how far a failure is allowed to travel:

- ValidationError: bad declaration, aborts that entity's setup only
- PermissionDeniedError: unreadable directory or EACCES, degrades to a skip
- BackupError: a requested backup was not produced, the write must not run
- StaleArtifactError: an old backup/temp file could not be removed
- SourceResolutionError: unsupported or unparsable source, unknown bucket
- ChildCreationError: an implicit child could not be created during recursion
- InternalContractError: a caller violated an engine invariant, always fatal
"""


class FSConvergeError(Exception):
    """Base exception for all fsconverge errors."""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)


class ConfigError(FSConvergeError):
    """Raised when engine configuration or declaration files cannot be loaded."""
    pass


class ValidationError(FSConvergeError):
    """Raised when a declared value is malformed or conflicts with another."""
    pass


class InternalContractError(FSConvergeError):
    """Raised when an engine invariant is violated by a caller (a bug, not user error)."""
    pass


# === FILESYSTEM ERRORS ===

class PermissionDeniedError(FSConvergeError):
    """Permission denied while reading a path or directory."""
    pass


class BackupError(FSConvergeError):
    """Raised when a requested backup could not be produced."""
    pass


class StaleArtifactError(FSConvergeError):
    """Raised when an old backup or temp artifact could not be removed."""
    pass


class WriteError(FSConvergeError):
    """Raised when replacing file contents fails."""
    pass


class ChildCreationError(FSConvergeError):
    """Raised when a recursion-discovered child cannot be created."""
    pass


# === SOURCE AND TRANSPORT ERRORS ===

class SourceResolutionError(FSConvergeError):
    """Raised when a source URI cannot be parsed or bound to a client."""
    pass


class BucketResolutionError(BackupError, SourceResolutionError):
    """Raised when a named backup bucket cannot be resolved."""
    pass


class TransportError(FSConvergeError):
    """Base class for transport layer errors."""

    def __init__(self, message: str, path: str = None, retry_possible: bool = True,
                 backoff_seconds: int = None):
        self.retry_possible = retry_possible
        self.backoff_seconds = backoff_seconds
        super().__init__(message, path=path)


class NetworkError(TransportError):
    """Network connectivity issues."""
    pass


class AuthenticationError(TransportError):
    """Authentication failures during transport."""

    def __init__(self, message: str, **kwargs):
        kwargs['retry_possible'] = False  # retrying bad credentials does not help
        super().__init__(message, **kwargs)


# done.
