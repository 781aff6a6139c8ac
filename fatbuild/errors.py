"""Error definitions for fatbuild.

Every error carries a stable ``code`` for structured handling, in the
same way across the toolchain, discovery, build and merge layers.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fatbuild.toolchain.task import Task
    from fatbuild.types import Dependency, Platform
    from fatbuild.xcode.project import ProjectLocator


class BuildError(Exception):
    """Base error for build operations."""

    def __init__(self, message: str, code: str = "build_error") -> None:
        super().__init__(message)
        self.code = code


class TaskError(BuildError):
    """Raised when a toolchain process exits unsuccessfully."""

    def __init__(
        self,
        task: Task,
        exit_code: int | None,
        stderr: str = "",
        code: str = "task_failed",
    ) -> None:
        message = f"{task} failed with exit code {exit_code}"
        if stderr.strip():
            message = f"{message}:\n{stderr.strip()}"
        super().__init__(message, code=code)
        self.task = task
        self.exit_code = exit_code
        self.stderr = stderr


class TaskTimeoutError(TaskError):
    """Raised when a toolchain process exceeds its timeout."""

    def __init__(self, task: Task, timeout: float) -> None:
        super().__init__(task, None, f"timed out after {timeout:g} seconds", code="task_timeout")
        self.timeout = timeout


class BuildFailedError(BuildError):
    """Raised when a build invocation fails; wraps the underlying task error."""

    def __init__(self, task_error: TaskError, log_path: Path | None = None) -> None:
        message = f"Build failed: {task_error}"
        if log_path is not None:
            message = f"{message}\nBuild log: {log_path}"
        super().__init__(message, code="build_failed")
        self.task_error = task_error
        self.log_path = log_path


class XcodebuildTimeoutError(BuildError):
    """Raised when a build settings query does not finish in time."""

    def __init__(self, project: ProjectLocator) -> None:
        super().__init__(
            f"Failed to discover shared schemes in project {project.path.name} - "
            "either the project does not have any shared schemes, or xcodebuild "
            "never returned",
            code="xcodebuild_timeout",
        )
        self.project = project


class NoSharedSchemesError(BuildError):
    """Raised when a project exposes no shared schemes."""

    def __init__(self, project: ProjectLocator, repository: str | None = None) -> None:
        message = f"Project {project.path.name} has no shared schemes"
        if repository:
            message = f"Dependency {repository} has no shared schemes ({project.path.name})"
        super().__init__(message, code="no_shared_schemes")
        self.project = project
        self.repository = repository


class NoSharedFrameworkSchemesError(BuildError):
    """Raised when a dependency has no shared framework schemes for some platforms."""

    def __init__(
        self,
        dependency: Dependency | str,
        platforms: Iterable[Platform] = (),
    ) -> None:
        self.platforms = frozenset(platforms)
        message = f'Dependency "{dependency}" has no shared framework schemes'
        if self.platforms:
            names = ", ".join(sorted(p.value for p in self.platforms))
            message = f"{message} for any of the platforms: {names}"
        super().__init__(message, code="no_shared_framework_schemes")
        self.dependency = dependency


class NoAvailableSimulatorsError(BuildError):
    """Raised when no simulator is available to build a simulator SDK."""

    def __init__(self, platform_name: str) -> None:
        super().__init__(
            f"No available simulators for platform {platform_name}",
            code="no_available_simulators",
        )
        self.platform_name = platform_name


class ParseError(BuildError):
    """Raised when toolchain output cannot be parsed."""

    def __init__(self, description: str) -> None:
        super().__init__(f"Parse error: {description}", code="parse_error")
        self.description = description


class WriteFailedError(BuildError):
    """Raised when a build product cannot be written."""

    def __init__(self, path: Path, reason: str | None = None) -> None:
        message = f"Could not write to {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, code="write_failed")
        self.path = path


class LockTimeoutError(BuildError):
    """Raised when the derived data lock cannot be acquired in time."""

    def __init__(self, path: Path, timeout: float) -> None:
        super().__init__(
            f"Timeout after {timeout:g}s waiting for lock on {path}",
            code="lock_timeout",
        )
        self.path = path
        self.timeout = timeout


class FatalConfigurationError(BuildError):
    """Raised for impossible build configurations; aborts the whole build."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="fatal_configuration")


class BuildCancelledError(BuildError):
    """Raised when a build is cancelled."""

    def __init__(self, message: str = "Build cancelled") -> None:
        super().__init__(message, code="cancelled")


__all__ = [
    "BuildCancelledError",
    "BuildError",
    "BuildFailedError",
    "FatalConfigurationError",
    "LockTimeoutError",
    "NoAvailableSimulatorsError",
    "NoSharedFrameworkSchemesError",
    "NoSharedSchemesError",
    "ParseError",
    "TaskError",
    "TaskTimeoutError",
    "WriteFailedError",
]
