"""Stripping and codesigning frameworks for distribution.

The order of operations is fixed: every binary mutation happens before
codesigning, since changing the binary afterwards invalidates the
signature.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from fatbuild.errors import WriteFailedError
from fatbuild.xcode import frameworks

if TYPE_CHECKING:
    from fatbuild.toolchain.task import Toolchain

logger = logging.getLogger(__name__)

STRIPPED_DIRECTORIES = ("Headers", "PrivateHeaders", "Modules")


def strip_binary(
    toolchain: Toolchain, framework: Path, keep_architectures: Iterable[str]
) -> list[str]:
    """Remove every architecture not in the keep-list from a framework binary.

    Returns:
        The removed architectures.
    """
    keep = set(keep_architectures)
    binary = frameworks.binary_path(framework)
    removed: list[str] = []
    for architecture in frameworks.architectures(toolchain, binary):
        if architecture in keep:
            continue
        toolchain.run(
            toolchain.xcrun(
                "lipo", "-remove", architecture, "-output", str(binary), str(binary)
            )
        )
        removed.append(architecture)
    if removed:
        logger.info("Stripped %s from %s", ", ".join(removed), framework.name)
    return removed


def strip_debug_symbols(toolchain: Toolchain, framework: Path) -> None:
    """Strip debug symbols from a framework binary."""
    binary = frameworks.binary_path(framework)
    toolchain.run(toolchain.xcrun("strip", "-S", "-o", str(binary), str(binary)))


def strip_directory(framework: Path, name: str) -> bool:
    """Remove a directory of a framework; a missing directory is fine.

    Returns:
        Whether the directory existed.
    """
    directory = framework / name
    if directory.is_symlink():
        directory.unlink()
        return True
    if not directory.is_dir():
        return False
    try:
        shutil.rmtree(directory)
    except OSError as e:
        raise WriteFailedError(directory, str(e)) from e
    return True


def codesign(toolchain: Toolchain, framework: Path, identity: str) -> None:
    """Sign a framework, keeping its identifier and entitlements."""
    toolchain.run(
        toolchain.xcrun(
            "codesign",
            "--force",
            "--sign",
            identity,
            "--preserve-metadata=identifier,entitlements",
            str(framework),
        )
    )
    logger.info("Signed %s with %s", framework.name, identity)


def strip_framework(
    toolchain: Toolchain,
    framework: Path,
    keep_architectures: Iterable[str],
    strip_debug: bool = False,
    codesigning_identity: str | None = None,
) -> None:
    """Prepare a framework for distribution.

    Args:
        toolchain: Toolchain used for lipo, strip and codesign.
        framework: Framework bundle to modify in place.
        keep_architectures: Architectures to keep in the binary.
        strip_debug: Also strip debug symbols.
        codesigning_identity: Identity to sign with, if any.

    Raises:
        TaskError: If a tool fails.
        WriteFailedError: If a directory cannot be removed.
    """
    strip_binary(toolchain, framework, keep_architectures)
    if strip_debug:
        strip_debug_symbols(toolchain, framework)
    for name in STRIPPED_DIRECTORIES:
        strip_directory(framework, name)
    if codesigning_identity is not None:
        codesign(toolchain, framework, codesigning_identity)


__all__ = [
    "STRIPPED_DIRECTORIES",
    "codesign",
    "strip_binary",
    "strip_debug_symbols",
    "strip_directory",
    "strip_framework",
]
