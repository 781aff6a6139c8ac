"""Framework bundle inspection.

This module handles:
- Resolving a framework's binary from its Info.plist
- Listing architectures (lipo) and debug UUIDs (dwarfdump) of a binary
- Locating Swift headers, Swift modules and bcsymbolmap files
- Creating dSYM bundles (dsymutil)
"""

from __future__ import annotations

import logging
import plistlib
import re
from pathlib import Path
from typing import TYPE_CHECKING

from fatbuild.errors import ParseError

if TYPE_CHECKING:
    from fatbuild.toolchain.task import Toolchain

logger = logging.getLogger(__name__)

FAT_PATTERN = re.compile(r"^Architectures in the fat file: .* are: (?P<archs>.+)$")
THIN_PATTERN = re.compile(r"^Non-fat file: .* is architecture: (?P<arch>\S+)$")
UUID_PATTERN = re.compile(r"^UUID: (?P<uuid>[0-9A-Fa-f-]{36}) \((?P<arch>[^)]+)\)")

INFO_PLIST_LOCATIONS = (
    "Info.plist",
    "Resources/Info.plist",
    "Versions/Current/Resources/Info.plist",
)


def binary_path(framework: Path) -> Path:
    """Return the path to a framework's executable.

    The executable name comes from ``CFBundleExecutable`` and falls back to
    the bundle name without extension.
    """
    for location in INFO_PLIST_LOCATIONS:
        plist_path = framework / location
        if not plist_path.is_file():
            continue
        try:
            with plist_path.open("rb") as f:
                info = plistlib.load(f)
        except (plistlib.InvalidFileException, ValueError) as e:
            raise ParseError(f"invalid Info.plist at {plist_path}: {e}") from e
        executable = info.get("CFBundleExecutable")
        if executable:
            return framework / executable
    return framework / framework.stem


def parse_lipo_info(output: str) -> list[str]:
    """Parse ``lipo -info`` output into architecture names."""
    for line in output.splitlines():
        stripped = line.strip()
        fat = FAT_PATTERN.match(stripped)
        if fat is not None:
            return fat.group("archs").split()
        thin = THIN_PATTERN.match(stripped)
        if thin is not None:
            return [thin.group("arch")]
    raise ParseError(f"could not read architectures from lipo output: {output.strip()!r}")


def architectures(toolchain: Toolchain, binary: Path) -> list[str]:
    """Return the architectures contained in a binary."""
    result = toolchain.run(toolchain.xcrun("lipo", "-info", str(binary)))
    return parse_lipo_info(result.stdout_text)


def parse_dwarfdump_uuids(output: str) -> list[str]:
    """Parse ``dwarfdump --uuid`` output into UUIDs, in output order."""
    uuids: list[str] = []
    for line in output.splitlines():
        match = UUID_PATTERN.match(line.strip())
        if match is not None and match.group("uuid") not in uuids:
            uuids.append(match.group("uuid"))
    return uuids


def debug_uuids(toolchain: Toolchain, binary: Path) -> list[str]:
    """Return the debug UUIDs embedded in a binary."""
    result = toolchain.run(toolchain.xcrun("dwarfdump", "--uuid", str(binary)))
    return parse_dwarfdump_uuids(result.stdout_text)


def bcsymbolmaps(toolchain: Toolchain, framework: Path) -> list[Path]:
    """Return the bcsymbolmap files that sit next to a built framework."""
    uuids = debug_uuids(toolchain, binary_path(framework))
    directory = framework.parent
    return [
        path
        for path in (directory / f"{uuid}.bcsymbolmap" for uuid in uuids)
        if path.is_file()
    ]


def swift_header_path(framework: Path) -> Path:
    """Path of the generated Swift interface header of a framework."""
    return framework / "Headers" / f"{binary_path(framework).name}-Swift.h"


def is_swift_framework(framework: Path) -> bool:
    """Whether the framework ships a Swift module."""
    modules = framework / "Modules" / f"{binary_path(framework).name}.swiftmodule"
    return modules.is_dir()


def create_debug_information(
    toolchain: Toolchain, framework: Path, output_directory: Path | None = None
) -> Path | None:
    """Create ``<framework>.dSYM`` for a framework.

    Args:
        toolchain: Toolchain used to run dsymutil.
        framework: Framework bundle whose binary is read.
        output_directory: Directory receiving the dSYM; defaults to the
            framework's own directory.

    Returns:
        Path of the dSYM bundle, or None when the framework has no name.
    """
    executable_name = framework.stem
    if not executable_name:
        return None
    dsym = (output_directory or framework.parent) / f"{framework.name}.dSYM"
    toolchain.run(
        toolchain.xcrun("dsymutil", str(binary_path(framework)), "-o", str(dsym))
    )
    logger.info("Created debug information: %s", dsym)
    return dsym


__all__ = [
    "architectures",
    "bcsymbolmaps",
    "binary_path",
    "create_debug_information",
    "debug_uuids",
    "is_swift_framework",
    "parse_dwarfdump_uuids",
    "parse_lipo_info",
    "swift_header_path",
]
