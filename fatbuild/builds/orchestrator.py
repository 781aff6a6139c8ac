"""Build orchestration.

This module provides the high-level build API:
- build_in_directory(): build every buildable scheme found in a directory
- build_dependency(): the same for a checked out dependency, with errors
  rewritten to name the dependency
- collect_artifacts(): drain an event stream into the built products

A directory build holds the derived data lock for its whole duration,
builds schemes strictly one after another, builds device SDKs before
simulator SDKs, and merges the two into one product per target. Progress
is reported as a stream of events; ``SchemeStarted`` always precedes the
output of its scheme and ``SchemeSucceeded``/``SchemeFailed`` always
follows it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TypeVar, Union

from fatbuild.builds.cache import SettingsCache
from fatbuild.builds.discovery import SchemeDiscovery, SchemeMatcher, load_scheme_matcher
from fatbuild.builds.executor import BuildExecutor
from fatbuild.builds.lock import directory_lock
from fatbuild.builds.merge import MergeEngine, staging_area
from fatbuild.builds.version_file import (
    VersionFileRecorder,
    VersionIdentity,
    VersionRecorder,
    current_commitish,
    is_git_directory,
)
from fatbuild.config import Settings, get_settings
from fatbuild.errors import (
    BuildCancelledError,
    BuildError,
    BuildFailedError,
    FatalConfigurationError,
    NoSharedFrameworkSchemesError,
    NoSharedSchemesError,
    TaskError,
)
from fatbuild.toolchain.task import (
    Launch,
    OutputEvent,
    StandardError,
    StandardOutput,
    Toolchain,
)
from fatbuild.types import SDK, BuildOptions, Dependency, Platform, split_sdks
from fatbuild.xcode import frameworks
from fatbuild.xcode.project import BuildArguments, ProjectLocator, Scheme, locate_projects
from fatbuild.xcode.settings import BuildSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

VariantFilter = Callable[[list[SDK], Scheme, str, ProjectLocator], list[SDK]]
BuiltProductsHandler = Callable[[list[Path]], None]


@dataclass(frozen=True)
class SchemeStarted:
    """A scheme is about to be built."""

    project: ProjectLocator
    scheme: Scheme


@dataclass(frozen=True)
class SchemeSucceeded:
    """A scheme was built; carries its products."""

    project: ProjectLocator
    scheme: Scheme
    artifacts: tuple[Path, ...]


@dataclass(frozen=True)
class SchemeFailed:
    """A scheme failed; the remaining schemes are still built."""

    project: ProjectLocator
    scheme: Scheme
    error: BuildError


BuildEvent = Union[SchemeStarted, SchemeSucceeded, SchemeFailed, Launch, StandardOutput, StandardError]


def build_all_variants(
    sdks: list[SDK], scheme: Scheme, configuration: str, project: ProjectLocator
) -> list[SDK]:
    """Default variant filter: keep every SDK."""
    return sdks


@dataclass
class _DirectoryBuild:
    """State of one directory build."""

    directory: Path
    root_directory: Path
    options: BuildOptions
    derived_data_dir: Path
    variant_filter: VariantFilter
    toolchain: Toolchain
    executor: BuildExecutor
    discovery: SchemeDiscovery
    merge_engine: MergeEngine
    dependency: Dependency | None = None
    project_name: str | None = None
    commitish: str | None = None
    built_products_handler: BuiltProductsHandler | None = None
    cancel_event: threading.Event | None = None
    log_file: IO[str] | None = None
    log_path: Path | None = None

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise BuildCancelledError()

    def log(self, event: OutputEvent) -> None:
        if self.log_file is None:
            return
        if isinstance(event, Launch):
            self.log_file.write(f"\n# Command: {event.task}\n")
        else:
            self.log_file.write(event.data.decode("utf-8", errors="replace"))
        self.log_file.flush()


def _translate_error(error: BuildError, dependency: Dependency) -> BuildError:
    if isinstance(error, NoSharedSchemesError):
        return NoSharedSchemesError(error.project, repository=str(dependency))
    return error


class BuildOrchestrator:
    """Builds the framework schemes of directories.

    The orchestrator owns the build settings, destination and scheme
    caches; they live as long as the orchestrator and are shared by every
    build it runs. Each build launches its processes through a view of the
    toolchain bound to its cancel event, so cancelling kills the running
    process.

    Args:
        toolchain: Toolchain for all processes; created from settings if
            not provided.
        settings: Application settings.
        version_recorder: Collaborator persisting version records.
    """

    def __init__(
        self,
        toolchain: Toolchain | None = None,
        settings: Settings | None = None,
        version_recorder: VersionRecorder | None = None,
    ) -> None:
        if settings is None:
            settings = get_settings()
        if toolchain is None:
            toolchain = Toolchain(settings.xcrun_path)

        self.settings = settings
        self.toolchain = toolchain
        self.version_recorder = version_recorder or VersionFileRecorder(
            settings.build_dir_name
        )

        self.settings_cache: SettingsCache[BuildArguments, tuple[BuildSettings, ...]] = (
            SettingsCache("build settings cache")
        )
        self.destination_cache: SettingsCache[SDK, str | None] = SettingsCache(
            "destination cache"
        )
        self.scheme_cache: SettingsCache[ProjectLocator, tuple[Scheme, ...]] = (
            SettingsCache("scheme cache")
        )

    def build_dependency(
        self,
        dependency: Dependency,
        root_directory: Path,
        options: BuildOptions,
        *,
        lock_timeout: float | None = None,
        variant_filter: VariantFilter | None = None,
        built_products_handler: BuiltProductsHandler | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[BuildEvent]:
        """Build a checked out dependency into the root directory's build folder.

        Same events as ``build_in_directory``; "no shared schemes" errors
        are rewritten to name the dependency.

        Raises:
            NoSharedFrameworkSchemesError: If the dependency has projects but
                no scheme builds a framework for the requested platforms.
        """
        directory = (root_directory / dependency.relative_path).resolve()
        events = self.build_in_directory(
            directory,
            options,
            root_directory=root_directory,
            dependency=dependency,
            lock_timeout=lock_timeout,
            variant_filter=variant_filter,
            built_products_handler=built_products_handler,
            cancel_event=cancel_event,
        )
        started = False
        try:
            for event in events:
                if isinstance(event, SchemeStarted):
                    started = True
                elif isinstance(event, SchemeFailed):
                    event = SchemeFailed(
                        event.project, event.scheme, _translate_error(event.error, dependency)
                    )
                yield event
        except NoSharedSchemesError as e:
            raise _translate_error(e, dependency) from e
        finally:
            events.close()

        if (
            not started
            and options.platforms
            and locate_projects(directory, self.settings.checkouts_dir_name)
        ):
            raise NoSharedFrameworkSchemesError(dependency, options.platforms)

    def build_in_directory(
        self,
        directory: Path,
        options: BuildOptions,
        *,
        root_directory: Path,
        dependency: Dependency | None = None,
        lock_timeout: float | None = None,
        project_name: str | None = None,
        commitish: str | None = None,
        scheme_matcher: SchemeMatcher | None = None,
        variant_filter: VariantFilter | None = None,
        built_products_handler: BuiltProductsHandler | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[BuildEvent]:
        """Build every buildable framework scheme in a directory.

        Nothing happens until the returned generator is iterated; the
        derived data lock is taken on the first iteration and released when
        the generator finishes, fails or is closed.

        Args:
            directory: Directory containing the projects to build.
            options: Build options.
            root_directory: Root whose build folder receives the products.
            dependency: Dependency being built, if any.
            lock_timeout: Lock acquisition timeout (defaults to settings).
            project_name: Name recorded for the current project when not
                building a dependency (defaults to the root folder name).
            commitish: Commitish recorded for the current project
                (defaults to the checkout's HEAD).
            scheme_matcher: Restricts buildable schemes; loaded from the
                directory's scheme file when not given.
            variant_filter: Filters the SDKs of each platform group.
            built_products_handler: Called with the products of each scheme.
            cancel_event: Cancels the build when set.

        Yields:
            SchemeStarted, toolchain output events, then SchemeSucceeded or
            SchemeFailed, for every scheme in turn.

        Raises:
            FatalConfigurationError: On unsupported SDK combinations.
            BuildCancelledError: When cancelled.
            LockTimeoutError: If the lock cannot be acquired in time.
            NoSharedSchemesError: If the directory shares no schemes.
        """
        derived_data_dir = (
            Path(options.derived_data_path)
            if options.derived_data_path
            else self.settings.derived_data_dir
        )
        if lock_timeout is None:
            lock_timeout = self.settings.lock_timeout
        if scheme_matcher is None:
            scheme_matcher = load_scheme_matcher(directory)

        build_dir = root_directory / self.settings.build_dir_name
        staging_root = build_dir / ".staging"
        toolchain = self.toolchain.with_cancel_event(cancel_event)
        context = _DirectoryBuild(
            directory=directory,
            root_directory=root_directory,
            options=options,
            derived_data_dir=derived_data_dir,
            variant_filter=variant_filter or build_all_variants,
            toolchain=toolchain,
            executor=BuildExecutor(
                toolchain, self.settings_cache, self.destination_cache, self.settings
            ),
            discovery=SchemeDiscovery(
                toolchain, self.settings_cache, self.settings, self.scheme_cache
            ),
            merge_engine=MergeEngine(toolchain, staging_root, cancel_event),
            dependency=dependency,
            project_name=project_name,
            commitish=commitish,
            built_products_handler=built_products_handler,
            cancel_event=cancel_event,
        )

        with directory_lock(derived_data_dir, timeout=lock_timeout), self._build_log(context):
            try:
                context.check_cancelled()
                schemes = context.discovery.buildable_schemes(
                    directory, options.configuration, options.platforms, scheme_matcher
                )
                for project, scheme in schemes:
                    context.check_cancelled()
                    yield SchemeStarted(project, scheme)
                    try:
                        products = yield from self._build_scheme(context, project, scheme)
                        self._post_build(context, products)
                    except (FatalConfigurationError, BuildCancelledError):
                        raise
                    except TaskError as e:
                        error = BuildFailedError(e, context.log_path)
                        logger.error("Scheme %s failed: %s", scheme, error)
                        yield SchemeFailed(project, scheme, error)
                        continue
                    except BuildError as e:
                        logger.error("Scheme %s failed: %s", scheme, e)
                        yield SchemeFailed(project, scheme, e)
                        continue
                    yield SchemeSucceeded(project, scheme, tuple(products))
            finally:
                if staging_root.is_dir() and not any(staging_root.iterdir()):
                    staging_root.rmdir()

    @contextmanager
    def _build_log(self, context: _DirectoryBuild) -> Iterator[None]:
        """Append all toolchain output of a directory build to a log file."""
        started_at = datetime.now(timezone.utc)
        logs_dir = self.settings.logs_dir
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / f"{context.directory.name}-{started_at:%Y%m%d-%H%M%S-%f}.log"

        with log_path.open("w", encoding="utf-8") as log_file:
            log_file.write(f"# Directory: {context.directory}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write("# " + "=" * 70 + "\n")
            context.log_file = log_file
            context.log_path = log_path
            try:
                yield
            finally:
                finished_at = datetime.now(timezone.utc)
                log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
                context.log_file = None
        logger.debug("Build log written to %s", log_path)

    def _forward(
        self, context: _DirectoryBuild, events: Generator[OutputEvent, None, T]
    ) -> Generator[OutputEvent, None, T]:
        """Forward output events while logging them and honouring cancellation."""
        try:
            while True:
                context.check_cancelled()
                try:
                    event = next(events)
                except StopIteration as stop:
                    return stop.value
                context.log(event)
                yield event
        finally:
            events.close()

    def _build_scheme(
        self, context: _DirectoryBuild, project: ProjectLocator, scheme: Scheme
    ) -> Generator[OutputEvent, None, list[Path]]:
        """Build one scheme for all of its platforms.

        Returns:
            Paths of the products placed in the platform folders.
        """
        options = context.options
        arguments = BuildArguments(
            project=project,
            scheme=scheme,
            configuration=options.configuration,
            derived_data_path=str(context.derived_data_dir),
            toolchain=options.toolchain,
        )

        sdks = context.executor.sdks_for_scheme(scheme, project)
        if not sdks:
            raise FatalConfigurationError(f"No SDKs found for scheme {scheme}")

        sdks_by_platform: dict[Platform, list[SDK]] = {}
        for sdk in sdks:
            sdks_by_platform.setdefault(sdk.platform, []).append(sdk)

        products: list[Path] = []
        for platform, group in sdks_by_platform.items():
            if options.platforms:
                group = [sdk for sdk in group if sdk.platform in options.platforms]
            filtered = context.variant_filter(group, scheme, options.configuration, project)
            if not filtered:
                continue

            folder = (
                context.root_directory / self.settings.build_dir_name / platform.directory_name
            ).resolve()

            if len(filtered) == 1:
                settings_by_target = yield from self._forward(
                    context, context.executor.build(filtered[0], arguments, context.directory)
                )
                for settings in settings_by_target.values():
                    product = context.merge_engine.copy_product(
                        settings, settings.product_destination(folder)
                    )
                    products.append(self._create_debug_information(context, product))

            elif len(filtered) == 2:
                simulators, devices = split_sdks(filtered)
                if len(devices) != 1 or len(simulators) != 1:
                    raise FatalConfigurationError(
                        f"Cannot merge {', '.join(s.value for s in filtered)} in scheme "
                        f"{scheme}: expected one device and one simulator SDK"
                    )
                device_settings = yield from self._forward(
                    context, context.executor.build(devices[0], arguments, context.directory)
                )
                simulator_settings = yield from self._forward(
                    context, context.executor.build(simulators[0], arguments, context.directory)
                )
                if set(device_settings) != set(simulator_settings):
                    raise FatalConfigurationError(
                        f"Targets built for {devices[0].value} ({', '.join(sorted(device_settings))}) "
                        f"do not match targets built for {simulators[0].value} "
                        f"({', '.join(sorted(simulator_settings))}) in scheme {scheme}"
                    )
                for target, device in device_settings.items():
                    product = context.merge_engine.merge(
                        device, simulator_settings[target], device.product_destination(folder)
                    )
                    products.append(self._create_debug_information(context, product))

            else:
                raise FatalConfigurationError(
                    f"SDK count {len(filtered)} for {platform.value} in scheme {scheme} "
                    "is not supported"
                )

        return products

    def _create_debug_information(self, context: _DirectoryBuild, product: Path) -> Path:
        """Create a dSYM next to a product if its binary carries debug UUIDs.

        The dSYM is written to a staging area and moved next to the product
        once dsymutil succeeded.
        """
        context.check_cancelled()
        binary = frameworks.binary_path(product)
        if not frameworks.debug_uuids(context.toolchain, binary):
            logger.debug("No debug UUIDs in %s, skipping dSYM", product.name)
            return product
        with staging_area(context.merge_engine.staging_root, product.parent) as staging:
            frameworks.create_debug_information(context.toolchain, product, staging)
            context.check_cancelled()
        return product

    def _post_build(self, context: _DirectoryBuild, products: list[Path]) -> None:
        """Record the version of the built products and notify the caller."""
        if context.dependency is not None:
            identity = VersionIdentity(context.dependency.name, context.dependency.version)
        elif is_git_directory(context.root_directory):
            identity = VersionIdentity(
                context.project_name or context.root_directory.name,
                context.commitish
                or current_commitish(context.toolchain, context.root_directory),
            )
        else:
            logger.info(
                "%s is not a git checkout, skipping version record",
                context.root_directory,
            )
            return

        self.version_recorder.record_version(
            identity,
            context.options.platforms,
            context.options.configuration,
            products,
            context.root_directory,
        )
        if context.built_products_handler is not None:
            context.built_products_handler(products)


def collect_artifacts(
    events: Iterable[BuildEvent],
    on_event: Callable[[BuildEvent], None] | None = None,
) -> list[Path]:
    """Drain a build event stream.

    Args:
        events: Events of a directory build.
        on_event: Optional callback receiving every event.

    Returns:
        All built products.

    Raises:
        BuildError: The first scheme failure, after the stream is drained.
    """
    artifacts: list[Path] = []
    first_error: BuildError | None = None
    for event in events:
        if on_event is not None:
            on_event(event)
        if isinstance(event, SchemeSucceeded):
            artifacts.extend(event.artifacts)
        elif isinstance(event, SchemeFailed) and first_error is None:
            first_error = event.error
    if first_error is not None:
        raise first_error
    return artifacts


__all__ = [
    "BuildEvent",
    "BuildOrchestrator",
    "BuiltProductsHandler",
    "SchemeFailed",
    "SchemeStarted",
    "SchemeSucceeded",
    "VariantFilter",
    "build_all_variants",
    "collect_artifacts",
]
