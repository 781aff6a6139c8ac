"""Tests for xcode/settings.py module."""

from pathlib import Path

import pytest

from fatbuild.errors import ParseError
from fatbuild.types import SDK, BuildAction, FrameworkType
from fatbuild.xcode.settings import BuildSettings, parse_build_settings

SAMPLE_OUTPUT = """\
Command line invocation:
    /usr/bin/xcodebuild -showBuildSettings

User defaults from command line:
    IDEPackageSupportUseBuiltinSCM = YES

Build settings for action archive and target Kit:
    BUILT_PRODUCTS_DIR = /DD/Build/Products/Release-iphoneos
    CONFIGURATION = Release
    CONTENTS_FOLDER_PATH = Kit.framework
    EFFECTIVE_PLATFORM_NAME = -iphoneos
    ENABLE_BITCODE = YES
    EXECUTABLE_PATH = Kit.framework/Kit
    MACH_O_TYPE = mh_dylib
    OBJROOT = /DD/Build/Intermediates.noindex
    PRODUCT_MODULE_NAME = Kit
    PRODUCT_TYPE = com.apple.product-type.framework
    PROJECT_FILE_PATH = /src/Kit.xcodeproj
    SUPPORTED_PLATFORMS = iphonesimulator iphoneos
    WRAPPER_NAME = Kit.framework

Build settings for action archive and target "KitTests":
    PRODUCT_TYPE = com.apple.product-type.bundle.unit-test
    OTHER_LDFLAGS =
"""


class TestParseBuildSettings:
    """Tests for parse_build_settings."""

    def test_parses_targets_in_order(self):
        """One record per target, ignoring the preamble."""
        results = parse_build_settings(SAMPLE_OUTPUT)
        assert [s.target for s in results] == ["Kit", "KitTests"]
        assert results[0].get("CONFIGURATION") == "Release"

    def test_empty_value(self):
        """A setting without a value parses as empty string."""
        results = parse_build_settings(SAMPLE_OUTPUT)
        assert results[1].get("OTHER_LDFLAGS") == ""

    def test_action_attached(self):
        """The requested action is attached to every record."""
        results = parse_build_settings(SAMPLE_OUTPUT, BuildAction.ARCHIVE)
        assert all(s.action is BuildAction.ARCHIVE for s in results)

    def test_no_sections(self):
        """Output without sections yields no records."""
        assert parse_build_settings("note: nothing here\n") == []

    def test_garbage_in_section_raises(self):
        """A non-setting line inside a section is a parse error."""
        output = "Build settings for action build and target Kit:\n    this is not a setting\n"
        with pytest.raises(ParseError):
            parse_build_settings(output)


class TestBuildSettings:
    """Tests for derived BuildSettings properties."""

    @pytest.fixture
    def kit(self) -> BuildSettings:
        return parse_build_settings(SAMPLE_OUTPUT)[0]

    def test_immutable(self, kit: BuildSettings):
        """Raw settings cannot be modified."""
        with pytest.raises(TypeError):
            kit.settings["CONFIGURATION"] = "Debug"  # type: ignore[index]

    def test_framework_type(self, kit: BuildSettings):
        """A dylib framework is dynamic; other products are not frameworks."""
        assert kit.framework_type is FrameworkType.DYNAMIC
        assert BuildSettings("T", {"PRODUCT_TYPE": "com.apple.product-type.application"}).framework_type is None
        static = BuildSettings(
            "S",
            {"PRODUCT_TYPE": "com.apple.product-type.framework", "MACH_O_TYPE": "staticlib"},
        )
        assert static.framework_type is FrameworkType.STATIC
        legacy = BuildSettings("L", {"PRODUCT_TYPE": "com.apple.product-type.framework.static"})
        assert legacy.framework_type is FrameworkType.STATIC

    def test_build_sdks(self, kit: BuildSettings):
        """SUPPORTED_PLATFORMS maps to SDKs; unknown names are ignored."""
        assert kit.build_sdks == [SDK.IPHONESIMULATOR, SDK.IPHONEOS]
        assert BuildSettings("T", {"SUPPORTED_PLATFORMS": "macosx driverkit"}).build_sdks == [SDK.MACOSX]

    def test_flags_and_paths(self, kit: BuildSettings):
        assert kit.bitcode_enabled is True
        assert kit.project_path == Path("/src/Kit.xcodeproj")
        assert kit.wrapper_name == "Kit.framework"
        assert kit.executable_path == "Kit.framework/Kit"
        assert kit.relative_modules_path == "Kit.framework/Modules/Kit.swiftmodule"

    def test_built_products_dir_for_build(self, kit: BuildSettings):
        """Build products live in BUILT_PRODUCTS_DIR."""
        build = kit.with_action(BuildAction.BUILD)
        assert build.built_products_dir == Path("/DD/Build/Products/Release-iphoneos")
        assert build.executable_url == Path("/DD/Build/Products/Release-iphoneos/Kit.framework/Kit")

    def test_built_products_dir_for_archive(self, kit: BuildSettings):
        """Archive products live in the archive intermediates."""
        archive = kit.with_action(BuildAction.ARCHIVE)
        assert archive.built_products_dir == Path(
            "/DD/Build/Intermediates.noindex/ArchiveIntermediates/Kit/BuildProductsPath/Release-iphoneos"
        )
        assert archive.wrapper_path.name == "Kit.framework"

    def test_missing_required_setting(self):
        """Required settings raise ParseError when absent."""
        with pytest.raises(ParseError):
            BuildSettings("T", {}).wrapper_name

    def test_product_destination(self, kit: BuildSettings):
        """Static frameworks go to a Static subfolder."""
        folder = Path("/out/iOS")
        assert kit.product_destination(folder) == folder
        static = BuildSettings("S", {"PRODUCT_TYPE": "com.apple.product-type.framework.static"})
        assert static.product_destination(folder) == folder / "Static"
