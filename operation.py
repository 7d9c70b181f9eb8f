"""
Operation descriptor for a single file install job.

A job is described once, from its command-line flags, and never changes
afterwards. Everything downstream (which path to write, which archive to
purge, which category to reconcile) is derived from these values.

Command line (single-dash flags, as passed by the job scheduler):

    -discord_id 1234 -refresh_token abc -prefix mods/1234/ValheimPlus.zip
    -destination /valheim/BepInEx/plugins/ -archive true -op write
"""

from __future__ import annotations

import argparse
import logging
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_log = logging.getLogger(__name__)

WORLD_EXTENSIONS = (".db", ".fwl")


class OpKind(str, Enum):
    WRITE = "write"
    DELETE = "delete"
    COPY = "copy"

    @property
    def installs(self) -> bool:
        """True when the operation leaves the file present on disk."""
        return self in (OpKind.WRITE, OpKind.COPY)


class OperationDescriptor(BaseModel):
    """One unit of work: fetch ``source_key`` and apply ``kind`` at
    ``destination_path``.

    ``destination_path`` is a directory for write/delete and the exact
    file to overwrite for copy. Copy operations never unpack archives.
    """

    model_config = ConfigDict(frozen=True)

    discord_id: str
    refresh_token: str = Field(repr=False)
    source_key: str
    destination_path: str
    kind: OpKind
    is_archive: bool = False

    @field_validator("discord_id", "refresh_token")
    @classmethod
    def _required(cls, v: str) -> str:
        if not v:
            raise ValueError("-discord_id and -refresh_token args are required")
        return v

    @field_validator("source_key")
    @classmethod
    def _has_file_name(cls, v: str) -> str:
        if not PurePosixPath(v).name:
            raise ValueError(f"prefix {v!r} does not name a file")
        return v

    @field_validator("destination_path")
    @classmethod
    def _absolute(cls, v: str) -> str:
        if not PurePosixPath(v).is_absolute():
            raise ValueError(f"destination {v!r} must be an absolute path")
        return v

    @model_validator(mode="after")
    def _copy_is_not_archive(self) -> OperationDescriptor:
        if self.kind is OpKind.COPY and self.is_archive:
            raise ValueError('"copy" operation and archive cannot be used together')
        return self

    @property
    def resolved_file_name(self) -> str:
        return PurePosixPath(self.source_key).name

    @property
    def final_destination_path(self) -> Path:
        if self.kind is OpKind.COPY:
            # Path() drops a trailing slash, so "/x/foo.cfg/" still targets the file
            return Path(self.destination_path)
        return Path(self.destination_path) / self.resolved_file_name

    @property
    def is_world_file(self) -> bool:
        return self.resolved_file_name.endswith(WORLD_EXTENSIONS)

    def with_suffix(self, suffix: str) -> OperationDescriptor:
        """Return a sibling descriptor with the file extension swapped in
        both the key and the destination."""
        key = PurePosixPath(self.source_key).with_suffix(suffix)
        destination = self.destination_path
        if self.kind is OpKind.COPY:
            destination = str(self.final_destination_path.with_suffix(suffix))
        return self.model_copy(
            update={"source_key": str(key), "destination_path": destination}
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hearthhub-file-install",
        description="Install or remove one file from object storage on the server volume",
    )
    parser.add_argument("-discord_id", default="", help="Discord ID")
    parser.add_argument("-refresh_token", default="", help="Refresh token")
    parser.add_argument(
        "-prefix",
        default="",
        help="Object key including the extension, e.g. mods/general/ValheimPlus.zip",
    )
    parser.add_argument("-destination", default="", help="Destination on the server volume")
    parser.add_argument(
        "-archive",
        default="false",
        help="'true' if the file is an archive and needs unpacking",
    )
    parser.add_argument(
        "-op",
        default="",
        help='Operation to perform: "write", "delete" or "copy"',
    )
    return parser


def parse_operation(argv: Sequence[str] | None = None) -> OperationDescriptor:
    """Parse job flags into a descriptor.

    Raises ``pydantic.ValidationError`` for a missing identity, an unknown
    op, a relative destination or copy combined with an archive.
    """
    args = build_parser().parse_args(argv)
    descriptor = OperationDescriptor(
        discord_id=args.discord_id,
        refresh_token=args.refresh_token,
        source_key=args.prefix,
        destination_path=args.destination,
        kind=args.op,
        is_archive=args.archive == "true",
    )
    if descriptor.is_archive:
        _log.info("given file: %s is an archive and needs unpacking", descriptor.source_key)
    _log.info(
        "discord id: %s, key: %s, destination: %s, archive: %s, op: %s",
        descriptor.discord_id,
        descriptor.source_key,
        descriptor.final_destination_path,
        descriptor.is_archive,
        descriptor.kind.value,
    )
    return descriptor
