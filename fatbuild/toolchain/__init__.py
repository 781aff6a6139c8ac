"""Toolchain invocation module.

This module handles launching toolchain processes (xcodebuild, lipo,
dsymutil, ...) and streaming their output as task events.
"""

from fatbuild.toolchain.task import (
    Launch,
    StandardError,
    StandardOutput,
    Success,
    Task,
    TaskResult,
    Toolchain,
    forward_output,
)

__all__ = [
    "Launch",
    "StandardError",
    "StandardOutput",
    "Success",
    "Task",
    "TaskResult",
    "Toolchain",
    "forward_output",
]
