"""Placing and merging built products.

This module handles:
- Copying a single-SDK product into its platform folder
- Merging device and simulator builds of one target into a fat framework
  (lipo'd binary, simulator-guarded Swift header, merged Swift module)
- Copying bcsymbolmap files of bitcode-enabled products

Products are assembled in a staging directory on the same filesystem as
the destination and renamed into place only after every step succeeded,
so a destination is either complete or untouched.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fatbuild.errors import BuildCancelledError, WriteFailedError
from fatbuild.xcode import frameworks

if TYPE_CHECKING:
    from fatbuild.toolchain.task import Toolchain
    from fatbuild.xcode.settings import BuildSettings

logger = logging.getLogger(__name__)

TARGET_CONDITIONALS_PREAMBLE = (
    b"#ifndef TARGET_OS_SIMULATOR\n#include <TargetConditionals.h>\n#endif\n"
)
SIMULATOR_CONDITION = b"#if TARGET_OS_SIMULATOR\n"
ELSE_CONDITION = b"\n#else\n"
END_CONDITION = b"\n#endif\n"


def merge_header_contents(simulator_header: bytes, device_header: bytes) -> bytes:
    """Combine two Swift headers behind a simulator conditional."""
    return b"".join(
        [
            TARGET_CONDITIONALS_PREAMBLE,
            SIMULATOR_CONDITION,
            simulator_header,
            ELSE_CONDITION,
            device_header,
            END_CONDITION,
        ]
    )


def merge_module_into_module(source: Path, destination: Path) -> list[Path]:
    """Copy the top-level files of one Swift module directory into another.

    Subdirectories and hidden files are skipped, destination paths are
    resolved through symlinks, and files already present in the
    destination are kept.

    Returns:
        Paths of the copied files.
    """
    destination.mkdir(parents=True, exist_ok=True)
    copied: list[Path] = []
    for entry in sorted(source.iterdir()):
        if entry.name.startswith(".") or entry.is_dir():
            continue
        target = (destination / entry.name).resolve()
        if target.exists():
            logger.debug("Keeping existing module file %s", target)
            continue
        shutil.copy2(entry, target)
        copied.append(target)
    return copied


@contextmanager
def staging_area(staging_root: Path, folder: Path) -> Iterator[Path]:
    """Stage files for a folder and move them in when the block succeeds.

    Every entry created in the yielded directory is moved into ``folder``,
    replacing existing entries; directories are moved last. On any
    exception the staged files are deleted and ``folder`` is left as it
    was.
    """
    staging_root.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix="stage-", dir=staging_root))
    try:
        yield staging
        entries = sorted(staging.iterdir(), key=lambda p: (p.is_dir(), p.name))
        if entries:
            folder.mkdir(parents=True, exist_ok=True)
        for entry in entries:
            target = folder / entry.name
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()
            os.replace(entry, target)
    finally:
        shutil.rmtree(staging, ignore_errors=True)


class MergeEngine:
    """Copies and merges built products into platform folders.

    Args:
        toolchain: Toolchain used for lipo and dwarfdump; its tasks are
            killed when the cancel event is set.
        staging_root: Directory for staging areas; must be on the same
            filesystem as the destinations.
        cancel_event: Optional event checked between merge steps and
            while tasks run.
    """

    def __init__(
        self,
        toolchain: Toolchain,
        staging_root: Path,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.toolchain = toolchain.with_cancel_event(cancel_event)
        self.staging_root = staging_root
        self.cancel_event = cancel_event

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise BuildCancelledError()

    def _copy_into(self, settings: BuildSettings, staging: Path) -> Path:
        source = settings.wrapper_path.resolve()
        target = staging / settings.wrapper_name
        try:
            shutil.copytree(source, target, symlinks=True)
        except OSError as e:
            raise WriteFailedError(target, str(e)) from e
        self._copy_bcsymbolmaps(settings, staging)
        return target

    def _copy_bcsymbolmaps(self, settings: BuildSettings, staging: Path) -> list[Path]:
        if not settings.bitcode_enabled:
            return []
        copied: list[Path] = []
        for symbol_map in frameworks.bcsymbolmaps(self.toolchain, settings.wrapper_path):
            target = staging / symbol_map.name
            shutil.copy2(symbol_map, target)
            copied.append(target)
        return copied

    def copy_product(self, settings: BuildSettings, folder: Path) -> Path:
        """Copy a built product (and its bcsymbolmaps) into a folder.

        Returns:
            Path of the product in ``folder``.
        """
        with staging_area(self.staging_root, folder) as staging:
            self._copy_into(settings, staging)
            self.check_cancelled()
        product = folder / settings.wrapper_name
        logger.info("Copied %s to %s", settings.target, product)
        return product

    def merge_executables(self, executables: list[Path], output: Path) -> None:
        """Create a fat binary from several executables."""
        self.toolchain.run(
            self.toolchain.xcrun(
                "lipo", "-create", *(str(p) for p in executables), "-output", str(output)
            )
        )

    def merge_swift_headers(
        self, simulator_framework: Path, device_framework: Path, output_framework: Path
    ) -> Path | None:
        """Write a Swift header valid for both simulator and device.

        Returns:
            The merged header, or None when either input has no header.
        """
        simulator_header = frameworks.swift_header_path(simulator_framework)
        device_header = frameworks.swift_header_path(device_framework)
        if not simulator_header.is_file() or not device_header.is_file():
            return None

        output = frameworks.swift_header_path(output_framework)
        contents = merge_header_contents(
            simulator_header.read_bytes(), device_header.read_bytes()
        )
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(contents)
        except OSError as e:
            raise WriteFailedError(output, str(e)) from e
        return output

    def merge(
        self,
        device: BuildSettings,
        simulator: BuildSettings,
        folder: Path,
    ) -> Path:
        """Merge the device and simulator products of one target.

        Steps run in order and each must succeed before the next:
        copy the device product, lipo both executables over the copied one,
        merge the Swift headers of Swift frameworks, merge the simulator Swift
        module files, copy the simulator bcsymbolmaps.

        Returns:
            Path of the merged product in ``folder``.

        Raises:
            TaskError: If lipo fails.
            WriteFailedError: If files cannot be written.
            BuildCancelledError: If cancelled between steps.
        """
        logger.info("Merging %s device and simulator products", device.target)
        with staging_area(self.staging_root, folder) as staging:
            product = self._copy_into(device, staging)
            self.check_cancelled()

            output = (staging / device.executable_path).resolve()
            self.merge_executables(
                [device.executable_url.resolve(), simulator.executable_url.resolve()],
                output,
            )
            self.check_cancelled()

            if frameworks.is_swift_framework(product):
                self.merge_swift_headers(
                    simulator.wrapper_path.resolve(), device.wrapper_path.resolve(), product
                )
            self.check_cancelled()

            source_modules = simulator.relative_modules_path
            destination_modules = device.relative_modules_path
            if source_modules is not None and destination_modules is not None:
                source = simulator.built_products_dir / source_modules
                if source.is_dir():
                    merge_module_into_module(source, staging / destination_modules)
            self.check_cancelled()

            self._copy_bcsymbolmaps(simulator, staging)
            self.check_cancelled()

        merged = folder / device.wrapper_name
        logger.info("Merged %s into %s", device.target, merged)
        return merged


__all__ = [
    "MergeEngine",
    "merge_header_contents",
    "merge_module_into_module",
    "staging_area",
]
