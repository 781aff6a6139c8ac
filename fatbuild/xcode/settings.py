"""Build settings parsing.

This module parses the output of ``xcodebuild -showBuildSettings`` into
one immutable ``BuildSettings`` record per target and derives the paths
and flags the build pipeline needs from the raw settings.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from fatbuild.errors import ParseError
from fatbuild.types import SDK, BuildAction, FrameworkType

SECTION_PATTERN = re.compile(
    r'^Build settings for action (?P<action>\S+) and target "?(?P<target>[^":]+)"?:\s*$'
)
SETTING_PATTERN = re.compile(r"^(?P<key>[A-Za-z0-9_]+) =(?: (?P<value>.*))?$")

FRAMEWORK_PRODUCT_TYPE = "com.apple.product-type.framework"
STATIC_FRAMEWORK_PRODUCT_TYPE = "com.apple.product-type.framework.static"


@dataclass(frozen=True)
class BuildSettings:
    """Settings of one target within one scheme/SDK build.

    Attributes:
        target: Target name.
        settings: Raw build settings (read-only).
        action: Action the product is built with; selects where the
            built products live.
    """

    target: str
    settings: Mapping[str, str] = field(default_factory=dict)
    action: BuildAction | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.settings, MappingProxyType):
            object.__setattr__(self, "settings", MappingProxyType(dict(self.settings)))

    def get(self, key: str) -> str | None:
        return self.settings.get(key)

    def require(self, key: str) -> str:
        """Return a setting, raising ParseError when it is missing."""
        value = self.settings.get(key)
        if value is None:
            raise ParseError(f'missing build setting "{key}" for target {self.target}')
        return value

    def with_action(self, action: BuildAction | None) -> BuildSettings:
        return dataclasses.replace(self, action=action)

    @property
    def framework_type(self) -> FrameworkType | None:
        product_type = self.get("PRODUCT_TYPE")
        if product_type == STATIC_FRAMEWORK_PRODUCT_TYPE:
            return FrameworkType.STATIC
        if product_type != FRAMEWORK_PRODUCT_TYPE:
            return None
        mach_o_type = self.get("MACH_O_TYPE")
        if mach_o_type == "mh_dylib":
            return FrameworkType.DYNAMIC
        if mach_o_type == "staticlib":
            return FrameworkType.STATIC
        return None

    @property
    def build_sdks(self) -> list[SDK]:
        """SDKs listed in SUPPORTED_PLATFORMS; unknown names are ignored."""
        sdks: list[SDK] = []
        for name in (self.get("SUPPORTED_PLATFORMS") or "").split():
            sdk = SDK.from_name(name)
            if sdk is not None and sdk not in sdks:
                sdks.append(sdk)
        return sdks

    @property
    def bitcode_enabled(self) -> bool:
        return self.get("ENABLE_BITCODE") == "YES"

    @property
    def project_path(self) -> Path | None:
        value = self.get("PROJECT_FILE_PATH")
        return Path(value) if value else None

    @property
    def target_build_dir(self) -> Path:
        return Path(self.require("TARGET_BUILD_DIR"))

    @property
    def built_products_dir(self) -> Path:
        """Directory holding the built products.

        Archives keep their products in the archive intermediates instead of
        ``BUILT_PRODUCTS_DIR``.
        """
        if self.action is BuildAction.ARCHIVE:
            configuration = self.require("CONFIGURATION") + (
                self.get("EFFECTIVE_PLATFORM_NAME") or ""
            )
            return (
                Path(self.require("OBJROOT"))
                / "ArchiveIntermediates"
                / self.target
                / "BuildProductsPath"
                / configuration
            )
        return Path(self.require("BUILT_PRODUCTS_DIR"))

    @property
    def wrapper_name(self) -> str:
        return self.require("WRAPPER_NAME")

    @property
    def wrapper_path(self) -> Path:
        return self.built_products_dir / self.wrapper_name

    @property
    def executable_path(self) -> str:
        """Executable path relative to the products directory."""
        return self.require("EXECUTABLE_PATH")

    @property
    def executable_url(self) -> Path:
        return self.built_products_dir / self.executable_path

    @property
    def relative_modules_path(self) -> str | None:
        """Relative path of the Swift module directory, if the target has one."""
        module_name = self.get("PRODUCT_MODULE_NAME")
        contents = self.get("CONTENTS_FOLDER_PATH")
        if not module_name or not contents:
            return None
        return f"{contents}/Modules/{module_name}.swiftmodule"

    def product_destination(self, folder: Path) -> Path:
        """Folder inside a platform folder where this product is placed."""
        if self.framework_type is FrameworkType.STATIC:
            return folder / "Static"
        return folder


def parse_build_settings(
    output: str, action: BuildAction | None = None
) -> list[BuildSettings]:
    """Parse ``xcodebuild -showBuildSettings`` output.

    Lines before the first section header (warnings and notes printed by
    xcodebuild) are ignored.

    Args:
        output: Raw standard output.
        action: Action to attach to every record.

    Returns:
        One BuildSettings per target section, in output order.

    Raises:
        ParseError: If a section holds a line that is not a setting.
    """
    results: list[BuildSettings] = []
    target: str | None = None
    current: dict[str, str] = {}

    for line in output.splitlines():
        header = SECTION_PATTERN.match(line.strip())
        if header is not None:
            if target is not None:
                results.append(BuildSettings(target, current, action))
            target = header.group("target").strip()
            current = {}
            continue
        if target is None:
            continue
        stripped = line.strip()
        if not stripped:
            continue
        setting = SETTING_PATTERN.match(stripped)
        if setting is None:
            raise ParseError(f"unexpected line in build settings of {target}: {stripped!r}")
        current[setting.group("key")] = setting.group("value") or ""

    if target is not None:
        results.append(BuildSettings(target, current, action))
    return results


__all__ = ["BuildSettings", "parse_build_settings"]
