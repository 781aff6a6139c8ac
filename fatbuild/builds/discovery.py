"""Scheme discovery.

This module handles:
- Listing the schemes of every project and workspace in a directory
- Filtering schemes to buildable framework schemes
- Loading an optional scheme matcher from ``Cartfile.schemes.yml``

Discovery order follows the directory scan; callers must not rely on it.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import yaml

from fatbuild.builds.executor import load_build_settings
from fatbuild.errors import (
    BuildCancelledError,
    BuildError,
    NoSharedSchemesError,
    ParseError,
    TaskTimeoutError,
    XcodebuildTimeoutError,
)
from fatbuild.types import Platform
from fatbuild.xcode.project import (
    BuildArguments,
    ProjectLocator,
    Scheme,
    locate_projects,
    parse_scheme_list,
)

if TYPE_CHECKING:
    from fatbuild.builds.cache import SettingsCache
    from fatbuild.config import Settings
    from fatbuild.toolchain.task import Toolchain
    from fatbuild.xcode.settings import BuildSettings

logger = logging.getLogger(__name__)

SCHEME_FILE_NAME = "Cartfile.schemes.yml"

ProjectScheme = tuple[ProjectLocator, Scheme]


class SchemeMatcher(Protocol):
    """Predicate restricting which schemes are built."""

    def matches(self, scheme: Scheme) -> bool: ...


@dataclass(frozen=True)
class PatternSchemeMatcher:
    """Accepts schemes whose name matches one of several glob patterns."""

    patterns: tuple[str, ...]

    def matches(self, scheme: Scheme) -> bool:
        return any(fnmatch.fnmatchcase(scheme.name, pattern) for pattern in self.patterns)


def load_scheme_matcher(directory: Path) -> PatternSchemeMatcher | None:
    """Load the scheme matcher of a checkout, if it declares one.

    The file is YAML with a ``schemes`` list of names or glob patterns::

        schemes:
          - MyFramework
          - MyFramework-*

    Returns:
        A matcher, or None when the file does not exist.

    Raises:
        ParseError: If the file is not valid.
    """
    path = directory / SCHEME_FILE_NAME
    if not path.is_file():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ParseError(f"invalid YAML in {path}: {e}") from e
    schemes = data.get("schemes") if isinstance(data, dict) else None
    if not isinstance(schemes, list) or not all(isinstance(s, str) for s in schemes):
        raise ParseError(f"{path} must contain a 'schemes' list of names")
    logger.info("Restricting schemes to %s", ", ".join(schemes))
    return PatternSchemeMatcher(tuple(schemes))


class SchemeDiscovery:
    """Finds the schemes to build in a directory.

    Args:
        toolchain: Toolchain used to run xcodebuild.
        settings_cache: Build settings cache shared with the executor.
        settings: Application settings.
        scheme_cache: Cache of scheme lists per project.
    """

    def __init__(
        self,
        toolchain: Toolchain,
        settings_cache: SettingsCache[BuildArguments, tuple[BuildSettings, ...]],
        settings: Settings,
        scheme_cache: SettingsCache[ProjectLocator, tuple[Scheme, ...]],
    ) -> None:
        self.toolchain = toolchain
        self.settings_cache = settings_cache
        self.settings = settings
        self.scheme_cache = scheme_cache

    def list_schemes(self, project: ProjectLocator) -> list[Scheme]:
        """List the shared schemes of a project or workspace (cached)."""

        def compute(project: ProjectLocator) -> tuple[Scheme, ...]:
            task = self.toolchain.xcrun("xcodebuild", "-list", *project.arguments)
            try:
                result = self.toolchain.run(
                    task, timeout=self.settings.settings_query_timeout
                )
            except TaskTimeoutError as e:
                raise XcodebuildTimeoutError(project) from e
            return tuple(parse_scheme_list(result.stdout_text))

        return list(self.scheme_cache.get_value(project, compute))

    def should_build_scheme(
        self,
        project: ProjectLocator,
        scheme: Scheme,
        configuration: str,
        platforms: frozenset[Platform] = frozenset(),
        scheme_matcher: SchemeMatcher | None = None,
    ) -> bool:
        """Whether a scheme builds a framework for the requested platforms.

        A scheme rejected by the matcher is never queried. Schemes whose
        settings cannot be loaded are treated as not buildable.
        """
        if scheme_matcher is not None and not scheme_matcher.matches(scheme):
            logger.debug("Scheme %s rejected by scheme matcher", scheme)
            return False

        arguments = BuildArguments(project=project, scheme=scheme, configuration=configuration)

        try:
            settings_list = load_build_settings(
                self.toolchain,
                self.settings_cache,
                arguments,
                self.settings.settings_query_timeout,
            )
        except BuildCancelledError:
            raise
        except BuildError as e:
            logger.warning("Skipping scheme %s: %s", scheme, e)
            return False

        for settings in settings_list:
            if settings.framework_type is None:
                continue
            if not platforms:
                return True
            if any(sdk.platform in platforms for sdk in settings.build_sdks):
                return True
        return False

    def buildable_schemes(
        self,
        directory: Path,
        configuration: str,
        platforms: frozenset[Platform] = frozenset(),
        scheme_matcher: SchemeMatcher | None = None,
    ) -> list[ProjectScheme]:
        """Find the (project, scheme) pairs to build in a directory.

        Schemes are built through their project file; a scheme only
        visible through a workspace is built through that workspace.

        Returns:
            Buildable pairs; empty when the directory has no projects.

        Raises:
            NoSharedSchemesError: If projects exist but none shares a scheme.
        """
        projects = locate_projects(directory, self.settings.checkouts_dir_name)
        if not projects:
            logger.info("No projects found in %s", directory)
            return []

        schemes_by_project = {project: self.list_schemes(project) for project in projects}
        if not any(schemes_by_project.values()):
            raise NoSharedSchemesError(projects[0])

        ordered = [p for p in projects if not p.is_workspace] + [
            p for p in projects if p.is_workspace
        ]
        seen: set[Scheme] = set()
        buildable: list[ProjectScheme] = []
        for project in ordered:
            for scheme in schemes_by_project[project]:
                if scheme in seen:
                    continue
                if self.should_build_scheme(
                    project, scheme, configuration, platforms, scheme_matcher
                ):
                    seen.add(scheme)
                    buildable.append((project, scheme))

        logger.info(
            "Found %d buildable scheme(s) in %s: %s",
            len(buildable),
            directory,
            ", ".join(scheme.name for _, scheme in buildable) or "none",
        )
        return buildable


__all__ = [
    "SCHEME_FILE_NAME",
    "PatternSchemeMatcher",
    "ProjectScheme",
    "SchemeDiscovery",
    "SchemeMatcher",
    "load_scheme_matcher",
]
