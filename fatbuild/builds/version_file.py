"""Version records for built products.

This module handles:
- Hashing built framework binaries
- Writing per-dependency version files (``.<name>.version``) next to the
  build products, keyed by the commitish the products were built from
- Reading the current commit of a git checkout

Version files are JSON; each platform folder name maps to the frameworks
built for it::

    {
      "commitish": "v1.2.0",
      "configuration": "Release",
      "iOS": [{"name": "Foo", "hash": "<sha256>"}],
      "Mac": [{"name": "Foo", "hash": "<sha256>"}]
    }
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fatbuild.errors import ParseError, WriteFailedError
from fatbuild.toolchain.task import Task
from fatbuild.types import Platform
from fatbuild.xcode import frameworks

if TYPE_CHECKING:
    from fatbuild.toolchain.task import Toolchain

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 64 * 1024  # 64KB


@dataclass(frozen=True)
class VersionIdentity:
    """What a set of build products was built from."""

    name: str
    commitish: str


class VersionRecorder(Protocol):
    """Persists what was built, once per built scheme."""

    def record_version(
        self,
        identity: VersionIdentity,
        platforms: frozenset[Platform],
        configuration: str,
        artifact_paths: list[Path],
        root_directory: Path,
    ) -> Path: ...


class CachedFramework(BaseModel):
    """One built framework and the hash of its binary."""

    model_config = ConfigDict(extra="ignore")

    name: str
    hash: str


class VersionFile(BaseModel):
    """Contents of a version file."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    commitish: str
    configuration: str | None = None
    mac: list[CachedFramework] | None = Field(default=None, alias="Mac")
    ios: list[CachedFramework] | None = Field(default=None, alias="iOS")
    tvos: list[CachedFramework] | None = Field(default=None, alias="tvOS")
    watchos: list[CachedFramework] | None = Field(default=None, alias="watchOS")

    def frameworks_for(self, platform: Platform) -> list[CachedFramework] | None:
        return getattr(self, _PLATFORM_FIELDS[platform])

    def set_frameworks(self, platform: Platform, entries: list[CachedFramework]) -> None:
        setattr(self, _PLATFORM_FIELDS[platform], entries)


_PLATFORM_FIELDS = {
    Platform.MACOS: "mac",
    Platform.IOS: "ios",
    Platform.TVOS: "tvos",
    Platform.WATCHOS: "watchos",
}


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def platform_for_artifact(artifact: Path, build_dir: Path) -> Platform | None:
    """Infer the platform of a product from its platform folder."""
    try:
        parts: tuple[str, ...] = artifact.relative_to(build_dir).parts[:1]
    except ValueError:
        parts = artifact.parts
    for platform in Platform:
        if platform.directory_name in parts:
            return platform
    return None


def read_version_file(path: Path) -> VersionFile | None:
    """Read a version file, or return None if it does not exist."""
    if not path.is_file():
        return None
    try:
        return VersionFile.model_validate_json(path.read_bytes())
    except ValidationError as e:
        raise ParseError(f"invalid version file {path}: {e}") from e


def write_version_file(version_file: VersionFile, output_path: Path) -> Path:
    """Write a version file as JSON."""
    data = version_file.model_dump(by_alias=True, exclude_none=True, mode="json")
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
    except OSError as e:
        raise WriteFailedError(output_path, str(e)) from e
    logger.info("Wrote version file %s", output_path)
    return output_path


class VersionFileRecorder:
    """Writes ``.<name>.version`` files into the build directory.

    Records for the same commitish and configuration are merged across
    schemes; anything else replaces the file.

    Args:
        build_dir_name: Build directory relative to the root directory.
    """

    def __init__(self, build_dir_name: str = "Carthage/Build") -> None:
        self.build_dir_name = build_dir_name

    def version_file_path(self, name: str, root_directory: Path) -> Path:
        return root_directory / self.build_dir_name / f".{name}.version"

    def record_version(
        self,
        identity: VersionIdentity,
        platforms: Iterable[Platform],
        configuration: str,
        artifact_paths: list[Path],
        root_directory: Path,
    ) -> Path:
        build_dir = root_directory / self.build_dir_name
        path = self.version_file_path(identity.name, root_directory)

        version_file = read_version_file(path)
        if (
            version_file is None
            or version_file.commitish != identity.commitish
            or version_file.configuration != configuration
        ):
            version_file = VersionFile(
                commitish=identity.commitish, configuration=configuration
            )

        for platform in platforms:
            if version_file.frameworks_for(platform) is None:
                version_file.set_frameworks(platform, [])

        for artifact in artifact_paths:
            platform = platform_for_artifact(artifact, build_dir)
            if platform is None:
                logger.warning("Cannot determine platform of %s", artifact)
                continue
            binary = frameworks.binary_path(artifact)
            if not binary.is_file():
                logger.warning("Missing binary for %s, not recorded", artifact)
                continue
            entry = CachedFramework(name=artifact.stem, hash=compute_file_hash(binary))
            entries = [
                e for e in (version_file.frameworks_for(platform) or []) if e.name != entry.name
            ]
            entries.append(entry)
            entries.sort(key=lambda e: e.name)
            version_file.set_frameworks(platform, entries)

        return write_version_file(version_file, path)


def is_git_directory(directory: Path) -> bool:
    """Whether a directory is the root of a git checkout."""
    return (directory / ".git").exists()


def current_commitish(toolchain: Toolchain, directory: Path) -> str:
    """Return the HEAD commit of a git checkout."""
    result = toolchain.run(Task("git", ("rev-parse", "HEAD"), directory))
    return result.stdout_text.strip()


__all__ = [
    "CachedFramework",
    "VersionFile",
    "VersionFileRecorder",
    "VersionIdentity",
    "VersionRecorder",
    "compute_file_hash",
    "current_commitish",
    "is_git_directory",
    "platform_for_artifact",
    "read_version_file",
    "write_version_file",
]
