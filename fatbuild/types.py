"""Shared type definitions for fatbuild.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Platform(str, Enum):
    """Platform a framework is built for."""

    MACOS = "macOS"
    IOS = "iOS"
    TVOS = "tvOS"
    WATCHOS = "watchOS"

    @property
    def directory_name(self) -> str:
        """Name of the platform folder below the build directory."""
        return "Mac" if self is Platform.MACOS else self.value

    @classmethod
    def parse(cls, value: str) -> Platform:
        """Parse a user supplied platform name (case-insensitive).

        Accepts the enum values as well as the directory names, so both
        ``mac`` and ``macOS`` resolve to ``Platform.MACOS``.

        Raises:
            ValueError: If the name is not a known platform.
        """
        lowered = value.strip().lower()
        for platform in cls:
            if lowered in (platform.value.lower(), platform.directory_name.lower()):
                return platform
        raise ValueError(f"Unknown platform: {value}")


class SDK(str, Enum):
    """An SDK a scheme can be built against (one variant of a platform)."""

    MACOSX = "macosx"
    IPHONEOS = "iphoneos"
    IPHONESIMULATOR = "iphonesimulator"
    APPLETVOS = "appletvos"
    APPLETVSIMULATOR = "appletvsimulator"
    WATCHOS = "watchos"
    WATCHSIMULATOR = "watchsimulator"

    @property
    def platform(self) -> Platform:
        return _SDK_PLATFORMS[self]

    @property
    def is_simulator(self) -> bool:
        return self.value.endswith("simulator")

    @property
    def is_device(self) -> bool:
        return not self.is_simulator

    @property
    def requires_bitcode(self) -> bool:
        """Whether products for this SDK must be built with bitcode."""
        return self in (SDK.APPLETVOS, SDK.WATCHOS)

    @classmethod
    def from_name(cls, name: str) -> SDK | None:
        """Return the SDK for a SUPPORTED_PLATFORMS entry, or None."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


_SDK_PLATFORMS = {
    SDK.MACOSX: Platform.MACOS,
    SDK.IPHONEOS: Platform.IOS,
    SDK.IPHONESIMULATOR: Platform.IOS,
    SDK.APPLETVOS: Platform.TVOS,
    SDK.APPLETVSIMULATOR: Platform.TVOS,
    SDK.WATCHOS: Platform.WATCHOS,
    SDK.WATCHSIMULATOR: Platform.WATCHOS,
}


def split_sdks(sdks: list[SDK]) -> tuple[list[SDK], list[SDK]]:
    """Split SDKs into (simulator SDKs, device SDKs), keeping order."""
    simulators = [sdk for sdk in sdks if sdk.is_simulator]
    devices = [sdk for sdk in sdks if sdk.is_device]
    return simulators, devices


class FrameworkType(str, Enum):
    """Linkage of a framework product."""

    DYNAMIC = "dynamic"
    STATIC = "static"


class BuildAction(str, Enum):
    """xcodebuild action used to produce a build."""

    BUILD = "build"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class Dependency:
    """A checked out dependency to build.

    Attributes:
        name: Dependency name, used for version records and messages.
        relative_path: Checkout location relative to the root directory.
        version: Pinned version or commitish of the checkout.
        repository: Optional remote identity (e.g. ``owner/repo``) used in
            error messages.
    """

    name: str
    relative_path: str
    version: str
    repository: str | None = None

    def __str__(self) -> str:
        return self.repository or self.name


@dataclass(frozen=True)
class BuildOptions:
    """Options for a directory build.

    Attributes:
        configuration: Build configuration (Debug, Release, ...).
        platforms: Platforms to build; empty means all supported ones.
        toolchain: Optional toolchain identifier passed to xcodebuild.
        derived_data_path: Optional derived data directory override.
    """

    configuration: str = "Release"
    platforms: frozenset[Platform] = field(default_factory=frozenset)
    toolchain: str | None = None
    derived_data_path: str | None = None


__all__ = [
    "SDK",
    "BuildAction",
    "BuildOptions",
    "Dependency",
    "FrameworkType",
    "Platform",
    "split_sdks",
]
