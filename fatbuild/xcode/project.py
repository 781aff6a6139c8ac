"""Projects, schemes and xcodebuild arguments.

This module handles:
- Locating projects and workspaces below a directory
- Parsing the scheme list printed by ``xcodebuild -list``
- Composing xcodebuild arguments (``BuildArguments``)
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from fatbuild.types import SDK

logger = logging.getLogger(__name__)

PROJECT_EXTENSION = ".xcodeproj"
WORKSPACE_EXTENSION = ".xcworkspace"


class ProjectKind(str, Enum):
    """Kind of project container."""

    WORKSPACE = "workspace"
    PROJECT = "project"


@dataclass(frozen=True)
class ProjectLocator:
    """Path to a project file or workspace.

    Attributes:
        path: Path to the ``.xcodeproj`` or ``.xcworkspace`` bundle.
        kind: Whether the path is a workspace or a project file.
    """

    path: Path
    kind: ProjectKind

    @classmethod
    def from_path(cls, path: Path) -> ProjectLocator | None:
        """Create a locator for a bundle path, or None if it is neither."""
        if path.suffix == WORKSPACE_EXTENSION:
            return cls(path, ProjectKind.WORKSPACE)
        if path.suffix == PROJECT_EXTENSION:
            return cls(path, ProjectKind.PROJECT)
        return None

    @property
    def is_workspace(self) -> bool:
        return self.kind is ProjectKind.WORKSPACE

    @property
    def arguments(self) -> list[str]:
        flag = "-workspace" if self.is_workspace else "-project"
        return [flag, str(self.path)]

    def sort_key(self) -> tuple[int, int, str]:
        """Workspaces first, then shallower paths, then by name."""
        return (0 if self.is_workspace else 1, len(self.path.parts), self.path.name)

    def __str__(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class Scheme:
    """A named buildable unit inside a project."""

    name: str

    def __str__(self) -> str:
        return self.name


def locate_projects(
    directory: Path,
    excluded_dir_name: str | None = "Carthage/Checkouts",
) -> list[ProjectLocator]:
    """Find all projects and workspaces below a directory.

    Hidden entries and the contents of bundles are skipped, so the
    ``project.xcworkspace`` inside every ``.xcodeproj`` is never reported.

    Args:
        directory: Directory to scan.
        excluded_dir_name: Relative directory whose tree is skipped
            (checked out nested dependencies).

    Returns:
        Locators sorted workspaces first, then by depth and name.
    """
    excluded = (directory / excluded_dir_name).resolve() if excluded_dir_name else None
    found: list[ProjectLocator] = []

    for current, dirnames, _ in os.walk(directory):
        current_path = Path(current)
        kept: list[str] = []
        for name in sorted(dirnames):
            if name.startswith("."):
                continue
            child = current_path / name
            if excluded is not None and child.resolve() == excluded:
                continue
            locator = ProjectLocator.from_path(child)
            if locator is not None:
                found.append(locator)
                # Do not descend into bundles
                continue
            kept.append(name)
        dirnames[:] = kept

    found.sort(key=ProjectLocator.sort_key)
    logger.debug("Located %d project(s) in %s", len(found), directory)
    return found


def parse_scheme_list(output: str) -> list[Scheme]:
    """Parse the ``Schemes:`` block of ``xcodebuild -list`` output.

    Args:
        output: Raw standard output of ``xcodebuild -list``.

    Returns:
        Schemes in listed order (empty when the block is missing).
    """
    schemes: list[Scheme] = []
    in_schemes = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_schemes:
            in_schemes = stripped == "Schemes:"
            continue
        if not stripped:
            break
        schemes.append(Scheme(stripped))
    return schemes


@dataclass(frozen=True)
class BuildArguments:
    """Arguments for one xcodebuild invocation.

    Instances are hashable and compare equal only when every field matches,
    which makes them usable as build settings cache keys.
    """

    project: ProjectLocator
    scheme: Scheme | None = None
    configuration: str | None = None
    sdk: SDK | None = None
    derived_data_path: str | None = None
    toolchain: str | None = None
    destination: str | None = None
    destination_timeout: int | None = None
    only_active_architecture: bool | None = None

    def replace(self, **changes: object) -> BuildArguments:
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]

    @property
    def arguments(self) -> list[str]:
        """The xcodebuild command line (without the action)."""
        args = ["xcodebuild", *self.project.arguments]

        if self.scheme is not None:
            args += ["-scheme", self.scheme.name]
        if self.configuration is not None:
            args += ["-configuration", self.configuration]
        if self.derived_data_path is not None:
            args += ["-derivedDataPath", self.derived_data_path]
        # Passing -sdk macosx breaks implicit dependency resolution
        if self.sdk is not None and self.sdk is not SDK.MACOSX:
            args += ["-sdk", self.sdk.value]
        if self.only_active_architecture is not None:
            value = "YES" if self.only_active_architecture else "NO"
            args.append(f"ONLY_ACTIVE_ARCH={value}")
        if self.destination is not None:
            args += ["-destination", self.destination]
        if self.destination_timeout is not None:
            args += ["-destination-timeout", str(self.destination_timeout)]
        if self.toolchain is not None:
            args += ["-toolchain", self.toolchain]

        # Products are signed later, when they are embedded
        args += ["CODE_SIGNING_REQUIRED=NO", "CODE_SIGN_IDENTITY="]
        args.append("CARTHAGE=YES")
        return args


__all__ = [
    "BuildArguments",
    "ProjectKind",
    "ProjectLocator",
    "Scheme",
    "locate_projects",
    "parse_scheme_list",
]
