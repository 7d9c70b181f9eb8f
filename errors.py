"""
Error types raised by the file install job.

Pre-mutation errors (``DirectoryError``, ``NotFoundError``) abort the job
before anything on disk changes. ``ArchiveError`` is fatal for the current
operation. ``ReconcileError`` is raised after the filesystem has already
been mutated and is only logged by the job.
"""


class FileInstallError(Exception):
    """Base class for every error raised by the job."""


class NotFoundError(FileInstallError):
    """The requested key does not exist in object storage."""

    def __init__(self, key: str, bucket: str | None = None):
        self.key = key
        self.bucket = bucket
        where = f"{bucket}:{key}" if bucket else key
        super().__init__(f"no such key: {where}")


class DirectoryError(FileInstallError):
    """A required directory is missing, not a directory, or unreadable."""


class ArchiveError(FileInstallError):
    """An archive could not be opened, is unsafe, or could not be removed."""


class ReconcileError(FileInstallError):
    """The profile store rejected a read or write."""


class ScaleError(FileInstallError):
    """The server scale API refused a replica change."""


class AuthError(FileInstallError):
    """The identity provider did not authenticate the user."""


class PartialPurgeWarning(UserWarning):
    """A file listed in an archive was already gone during purge."""
