"""Build execution for one scheme and SDK.

This module handles:
- Loading (cached) build settings with ``xcodebuild -showBuildSettings``
- Resolving (cached) simulator destinations
- Selecting the framework targets a build produces
- Composing and launching the ``build``/``archive`` invocation
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

from fatbuild.errors import (
    NoAvailableSimulatorsError,
    TaskTimeoutError,
    XcodebuildTimeoutError,
)
from fatbuild.toolchain.task import OutputEvent, forward_output
from fatbuild.types import SDK, BuildAction
from fatbuild.xcode.project import BuildArguments, ProjectLocator, Scheme
from fatbuild.xcode.settings import BuildSettings, parse_build_settings
from fatbuild.xcode.simulator import select_available_simulator

if TYPE_CHECKING:
    from fatbuild.builds.cache import SettingsCache
    from fatbuild.config import Settings
    from fatbuild.toolchain.task import Toolchain

logger = logging.getLogger(__name__)

# Build settings that keep archives from installing products or
# instrumenting them, and keep symbols for dSYM generation.
ARCHIVE_BUILD_SETTINGS = [
    "SKIP_INSTALL=YES",
    "GCC_INSTRUMENT_PROGRAM_FLOW_ARCS=NO",
    "CLANG_ENABLE_CODE_COVERAGE=NO",
    "STRIP_INSTALLED_PRODUCT=NO",
    "SWIFT_COMPILATION_MODE=wholemodule",
]


def load_build_settings(
    toolchain: Toolchain,
    cache: SettingsCache[BuildArguments, tuple[BuildSettings, ...]],
    arguments: BuildArguments,
    timeout: float | None,
    action: BuildAction | None = None,
) -> list[BuildSettings]:
    """Load the build settings of every target for some build arguments.

    The query runs once per distinct ``arguments``; ``archive`` is always
    the queried action because it also avoids an xcodebuild hang on
    projects with Core Data models.

    Args:
        toolchain: Toolchain used to run xcodebuild.
        cache: Build settings cache.
        arguments: Build arguments to query.
        timeout: Query timeout in seconds.
        action: Action attached to the returned settings.

    Returns:
        One BuildSettings per target.

    Raises:
        XcodebuildTimeoutError: If the query does not finish in time.
        TaskError: If xcodebuild fails.
        ParseError: If the output cannot be parsed.
    """

    def compute(args: BuildArguments) -> tuple[BuildSettings, ...]:
        task = toolchain.xcrun(
            *args.arguments, "archive", "-showBuildSettings", "-skipUnavailableActions"
        )
        try:
            result = toolchain.run(task, timeout=timeout)
        except TaskTimeoutError as e:
            raise XcodebuildTimeoutError(args.project) from e
        return tuple(parse_build_settings(result.stdout_text))

    return [settings.with_action(action) for settings in cache.get_value(arguments, compute)]


class BuildExecutor:
    """Builds one scheme for one SDK.

    Args:
        toolchain: Toolchain used to run every process.
        settings_cache: Build settings cache shared with discovery.
        destination_cache: Simulator destination cache.
        settings: Application settings.
    """

    def __init__(
        self,
        toolchain: Toolchain,
        settings_cache: SettingsCache[BuildArguments, tuple[BuildSettings, ...]],
        destination_cache: SettingsCache[SDK, str | None],
        settings: Settings,
    ) -> None:
        self.toolchain = toolchain
        self.settings_cache = settings_cache
        self.destination_cache = destination_cache
        self.settings = settings

    def load_build_settings(
        self, arguments: BuildArguments, action: BuildAction | None = None
    ) -> list[BuildSettings]:
        return load_build_settings(
            self.toolchain,
            self.settings_cache,
            arguments,
            self.settings.settings_query_timeout,
            action,
        )

    def sdks_for_scheme(self, scheme: Scheme, project: ProjectLocator) -> list[SDK]:
        """SDKs the scheme builds for by default (those of its first target)."""
        settings = self.load_build_settings(BuildArguments(project=project, scheme=scheme))
        if not settings:
            return []
        return settings[0].build_sdks

    def fetch_destination(self, sdk: SDK) -> str | None:
        """Resolve an xcodebuild destination for simulator SDKs.

        Returns:
            ``platform=<Platform> Simulator,id=<udid>`` for simulator SDKs,
            None for device SDKs.

        Raises:
            NoAvailableSimulatorsError: If no simulator is available.
        """

        def compute(sdk: SDK) -> str | None:
            if not sdk.is_simulator:
                return None
            result = self.toolchain.run(
                self.toolchain.xcrun("simctl", "list", "devices", "--json")
            )
            device = select_available_simulator(sdk, result.stdout)
            if device is None:
                raise NoAvailableSimulatorsError(sdk.platform.value)
            return f"platform={sdk.platform.value} Simulator,id={device.udid}"

        return self.destination_cache.get_value(sdk, compute)

    def should_build(
        self, settings: BuildSettings, sdk: SDK, working_directory: Path
    ) -> bool:
        """Whether a target's product should be taken from this build."""
        if settings.framework_type is None:
            return False
        project_path = settings.project_path
        if project_path is None:
            return False

        # Frameworks of nested dependencies are built on their own
        checkouts = (working_directory / self.settings.checkouts_dir_name).resolve()
        if project_path.resolve().is_relative_to(checkouts):
            logger.debug("Skipping %s from nested checkout %s", settings.target, project_path)
            return False

        if sdk.requires_bitcode and not settings.bitcode_enabled:
            logger.info(
                "Skipping %s for %s: bitcode is disabled", settings.target, sdk.value
            )
            return False
        return True

    def remove_stale_build_dir(self, settings: BuildSettings) -> None:
        """Delete TARGET_BUILD_DIR so two targets sharing a product name do not collide."""
        build_dir = settings.get("TARGET_BUILD_DIR")
        if not build_dir:
            return
        self.toolchain.run(self.toolchain.xcrun("rm", "-rf", build_dir))

    def build_actions(self, action: BuildAction, working_directory: Path) -> list[str]:
        actions = [action.value]
        if action is BuildAction.ARCHIVE:
            archive_path = Path(tempfile.gettempdir()) / working_directory.name
            actions += ["-archivePath", str(archive_path), *ARCHIVE_BUILD_SETTINGS]
        return actions

    def build(
        self, sdk: SDK, arguments: BuildArguments, working_directory: Path
    ) -> Generator[OutputEvent, None, dict[str, BuildSettings]]:
        """Build a scheme for one SDK.

        Device SDKs use the ``archive`` action, which disables LLVM
        instrumentation in the products; simulator SDKs use ``build``.

        Use as ``settings_by_target = yield from executor.build(...)``.

        Args:
            sdk: SDK to build for.
            arguments: Base build arguments (project, scheme, configuration).
            working_directory: Directory of the checkout being built.

        Yields:
            Launch and output events of the xcodebuild invocation.

        Returns:
            Settings of every built framework target, keyed by target name.

        Raises:
            TaskError: If xcodebuild fails.
            XcodebuildTimeoutError: If loading settings times out.
            NoAvailableSimulatorsError: If no simulator is available.
        """
        loading_arguments = arguments.replace(sdk=sdk)
        building_arguments = loading_arguments.replace(only_active_architecture=False)

        destination = self.fetch_destination(sdk)
        if destination is not None:
            building_arguments = building_arguments.replace(
                destination=destination,
                destination_timeout=self.settings.destination_timeout,
            )

        action = BuildAction.ARCHIVE if sdk.is_device else BuildAction.BUILD

        settings_by_target: dict[str, BuildSettings] = {}
        for settings in self.load_build_settings(loading_arguments, action):
            if not self.should_build(settings, sdk, working_directory):
                continue
            self.remove_stale_build_dir(settings)
            settings_by_target[settings.target] = settings

        logger.info(
            "Building %s for %s (%s)",
            arguments.scheme,
            sdk.value,
            ", ".join(settings_by_target) or "no framework targets",
        )

        task = self.toolchain.xcrun(
            *building_arguments.arguments,
            *self.build_actions(action, working_directory),
            working_directory=working_directory,
        )
        yield from forward_output(self.toolchain.launch(task))
        return settings_by_target


__all__ = ["ARCHIVE_BUILD_SETTINGS", "BuildExecutor", "load_build_settings"]
