"""Tests for xcode/project.py module."""

from pathlib import Path

from fatbuild.types import SDK
from fatbuild.xcode.project import (
    BuildArguments,
    ProjectKind,
    ProjectLocator,
    Scheme,
    locate_projects,
    parse_scheme_list,
)

LIST_OUTPUT = """\
Information about project "Kit":
    Targets:
        Kit
        KitTests

    Build Configurations:
        Debug
        Release

    Schemes:
        Kit-iOS
        Kit-macOS

"""


class TestLocateProjects:
    """Tests for locate_projects."""

    def test_finds_projects_and_workspaces(self, tmp_path: Path):
        """Workspaces come first, then shallower paths."""
        (tmp_path / "Kit.xcodeproj" / "project.xcworkspace").mkdir(parents=True)
        (tmp_path / "Kit.xcworkspace").mkdir()
        (tmp_path / "Examples" / "Demo.xcodeproj").mkdir(parents=True)

        found = locate_projects(tmp_path)

        assert found == [
            ProjectLocator(tmp_path / "Kit.xcworkspace", ProjectKind.WORKSPACE),
            ProjectLocator(tmp_path / "Kit.xcodeproj", ProjectKind.PROJECT),
            ProjectLocator(tmp_path / "Examples" / "Demo.xcodeproj", ProjectKind.PROJECT),
        ]

    def test_skips_checkouts_and_hidden(self, tmp_path: Path):
        """Nested dependency checkouts and hidden dirs are not scanned."""
        (tmp_path / "Carthage" / "Checkouts" / "Dep" / "Dep.xcodeproj").mkdir(parents=True)
        (tmp_path / ".build" / "Hidden.xcodeproj").mkdir(parents=True)
        (tmp_path / "Kit.xcodeproj").mkdir()

        assert [p.path.name for p in locate_projects(tmp_path)] == ["Kit.xcodeproj"]

    def test_empty_directory(self, tmp_path: Path):
        assert locate_projects(tmp_path) == []


class TestParseSchemeList:
    """Tests for parse_scheme_list."""

    def test_parses_schemes(self):
        assert parse_scheme_list(LIST_OUTPUT) == [Scheme("Kit-iOS"), Scheme("Kit-macOS")]

    def test_no_schemes_block(self):
        assert parse_scheme_list('Information about project "Kit":\n    Targets:\n        Kit\n') == []


class TestBuildArguments:
    """Tests for BuildArguments."""

    project = ProjectLocator(Path("/src/Kit.xcodeproj"), ProjectKind.PROJECT)

    def test_minimal_arguments(self):
        """Signing is always disabled and CARTHAGE is always set."""
        args = BuildArguments(self.project).arguments
        assert args == [
            "xcodebuild",
            "-project",
            "/src/Kit.xcodeproj",
            "CODE_SIGNING_REQUIRED=NO",
            "CODE_SIGN_IDENTITY=",
            "CARTHAGE=YES",
        ]

    def test_full_arguments(self):
        args = BuildArguments(
            self.project,
            scheme=Scheme("Kit"),
            configuration="Debug",
            sdk=SDK.IPHONESIMULATOR,
            derived_data_path="/DD",
            toolchain="swift-5.9",
            destination="platform=iOS Simulator,id=X",
            destination_timeout=10,
            only_active_architecture=False,
        ).arguments
        assert args[:3] == ["xcodebuild", "-project", "/src/Kit.xcodeproj"]
        assert args[args.index("-scheme") + 1] == "Kit"
        assert args[args.index("-configuration") + 1] == "Debug"
        assert args[args.index("-sdk") + 1] == "iphonesimulator"
        assert args[args.index("-derivedDataPath") + 1] == "/DD"
        assert args[args.index("-toolchain") + 1] == "swift-5.9"
        assert args[args.index("-destination") + 1] == "platform=iOS Simulator,id=X"
        assert args[args.index("-destination-timeout") + 1] == "10"
        assert "ONLY_ACTIVE_ARCH=NO" in args

    def test_macosx_sdk_omitted(self):
        """-sdk is never passed for macosx."""
        assert "-sdk" not in BuildArguments(self.project, sdk=SDK.MACOSX).arguments

    def test_workspace_flag(self):
        workspace = ProjectLocator(Path("/src/Kit.xcworkspace"), ProjectKind.WORKSPACE)
        assert BuildArguments(workspace).arguments[1] == "-workspace"

    def test_equality_requires_all_fields(self):
        """Arguments are cache keys: every field takes part in equality."""
        base = BuildArguments(self.project, Scheme("Kit"), "Release")
        assert base == BuildArguments(self.project, Scheme("Kit"), "Release")
        assert hash(base) == hash(BuildArguments(self.project, Scheme("Kit"), "Release"))
        assert base != base.replace(sdk=SDK.IPHONEOS)
        assert base != base.replace(configuration="Debug")
