"""Tests for builds/merge.py module."""

import shutil
import threading
import time
from pathlib import Path

import pytest

from fatbuild.builds.cache import SettingsCache
from fatbuild.builds.executor import BuildExecutor
from fatbuild.builds.merge import (
    MergeEngine,
    merge_header_contents,
    merge_module_into_module,
    staging_area,
)
from fatbuild.errors import BuildCancelledError, TaskError
from fatbuild.toolchain.task import Task
from fatbuild.types import SDK
from fatbuild.xcode.project import BuildArguments, ProjectLocator, Scheme
from fatbuild.xcode.settings import BuildSettings
from tests.fakes import FakeTarget, FakeToolchain, binary_archs, debug_uuid, drain


def build_pair(
    toolchain: FakeToolchain, settings, checkout: Path, target: FakeTarget
) -> tuple[BuildSettings, BuildSettings]:
    """Build a target for iphoneos and iphonesimulator."""
    fake = toolchain.add_project(checkout / "Kit.xcodeproj", {"Kit": [target]})
    project = ProjectLocator.from_path(fake.path)
    arguments = BuildArguments(
        project=project,
        scheme=Scheme("Kit"),
        configuration="Release",
        derived_data_path=str(settings.derived_data_dir),
    )
    executor = BuildExecutor(toolchain, SettingsCache(), SettingsCache(), settings)
    _, device = drain(executor.build(SDK.IPHONEOS, arguments, checkout))
    _, simulator = drain(executor.build(SDK.IPHONESIMULATOR, arguments, checkout))
    return device[target.name], simulator[target.name]


@pytest.fixture
def folder(tmp_path: Path) -> Path:
    return tmp_path / "Carthage" / "Build" / "iOS"


@pytest.fixture
def staging_root(tmp_path: Path) -> Path:
    return tmp_path / "Carthage" / "Build" / ".staging"


class TestMergeHeaderContents:
    """Tests for merge_header_contents."""

    def test_layout(self):
        merged = merge_header_contents(b"// sim", b"// device")
        assert merged == (
            b"#ifndef TARGET_OS_SIMULATOR\n#include <TargetConditionals.h>\n#endif\n"
            b"#if TARGET_OS_SIMULATOR\n// sim\n#else\n// device\n#endif\n"
        )


class TestMergeModuleIntoModule:
    """Tests for merge_module_into_module."""

    def test_copies_top_level_files(self, tmp_path: Path):
        source = tmp_path / "sim.swiftmodule"
        destination = tmp_path / "device.swiftmodule"
        (source / "Project").mkdir(parents=True)
        (source / "x86_64.swiftmodule").write_text("sim x86_64")
        (source / "arm64.swiftmodule").write_text("sim arm64")
        (source / ".DS_Store").write_text("")
        destination.mkdir()
        (destination / "arm64.swiftmodule").write_text("device arm64")

        copied = merge_module_into_module(source, destination)

        assert [p.name for p in copied] == ["x86_64.swiftmodule"]
        assert (destination / "arm64.swiftmodule").read_text() == "device arm64"
        assert not (destination / ".DS_Store").exists()
        assert not (destination / "Project").exists()


class TestStagingArea:
    """Tests for staging_area."""

    def test_moves_entries_on_success(self, tmp_path: Path, folder: Path, staging_root: Path):
        (folder / "Kit.framework").mkdir(parents=True)
        (folder / "Kit.framework" / "old").write_text("old")
        with staging_area(staging_root, folder) as staging:
            (staging / "Kit.framework").mkdir()
            (staging / "Kit.framework" / "new").write_text("new")
        assert (folder / "Kit.framework" / "new").exists()
        assert not (folder / "Kit.framework" / "old").exists()
        assert list(staging_root.iterdir()) == []

    def test_discards_on_error(self, folder: Path, staging_root: Path):
        with pytest.raises(RuntimeError):
            with staging_area(staging_root, folder) as staging:
                (staging / "Kit.framework").mkdir()
                raise RuntimeError("lipo failed")
        assert not folder.exists()
        assert list(staging_root.iterdir()) == []


class TestMerge:
    """Tests for MergeEngine.merge."""

    def test_merged_binary_has_union_of_architectures(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        merged = MergeEngine(toolchain, staging_root).merge(device, simulator, folder)

        assert merged == folder / "Kit.framework"
        assert sorted(binary_archs(merged / "Kit")) == ["arm64", "x86_64"]
        assert len(toolchain.commands("lipo")) == 1

    def test_swift_header_merged_when_both_exist(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        merged = MergeEngine(toolchain, staging_root).merge(device, simulator, folder)

        header = (merged / "Headers" / "Kit-Swift.h").read_text()
        assert header.startswith("#ifndef TARGET_OS_SIMULATOR\n")
        assert "// iphonesimulator interface" in header
        assert "// iphoneos interface" in header

    def test_no_merged_header_when_one_is_missing(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        (simulator.wrapper_path / "Headers" / "Kit-Swift.h").unlink()

        merged = MergeEngine(toolchain, staging_root).merge(device, simulator, folder)

        header = (merged / "Headers" / "Kit-Swift.h").read_text()
        assert "TARGET_OS_SIMULATOR" not in header

    def test_headers_not_merged_without_swift_module(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        """Only frameworks shipping a Swift module get a merged Swift header."""
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        shutil.rmtree(device.wrapper_path.resolve() / "Modules")

        merged = MergeEngine(toolchain, staging_root).merge(device, simulator, folder)

        header = (merged / "Headers" / "Kit-Swift.h").read_text()
        assert header == "// iphoneos interface\n"

    def test_objc_framework_has_no_swift_header(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        device, simulator = build_pair(
            toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator"), swift=False)
        )
        merged = MergeEngine(toolchain, staging_root).merge(device, simulator, folder)
        assert not (merged / "Headers" / "Kit-Swift.h").exists()
        assert (merged / "Headers" / "Kit.h").exists()

    def test_simulator_module_files_merged(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        """Simulator-only module files are added; device files are kept."""
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        merged = MergeEngine(toolchain, staging_root).merge(device, simulator, folder)

        modules = merged / "Modules" / "Kit.swiftmodule"
        assert (modules / "x86_64.swiftmodule").read_text() == "iphonesimulator x86_64\n"
        assert (modules / "arm64.swiftmodule").read_text() == "iphoneos arm64\n"

    def test_bcsymbolmaps_copied_with_bitcode(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        device, simulator = build_pair(
            toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator"), bitcode=True)
        )
        MergeEngine(toolchain, staging_root).merge(device, simulator, folder)

        assert (folder / f"{debug_uuid('Kit', 'arm64')}.bcsymbolmap").exists()
        assert (folder / f"{debug_uuid('Kit', 'x86_64')}.bcsymbolmap").exists()

    def test_cancellation_mid_merge_leaves_destination_absent(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        cancel = threading.Event()

        def cancel_on_lipo(task):
            if task.arguments[:2] == ("lipo", "-create"):
                cancel.set()

        toolchain.on_task = cancel_on_lipo
        with pytest.raises(BuildCancelledError):
            MergeEngine(toolchain, staging_root, cancel).merge(device, simulator, folder)

        assert not (folder / "Kit.framework").exists()
        assert list(staging_root.iterdir()) == []

    def test_cancellation_stops_running_lipo(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        """Cancelling while lipo runs kills it instead of waiting for it."""
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        toolchain.real_process = lambda task: (
            Task("/bin/sh", ("-c", "sleep 6; true")) if task.arguments[:1] == ("lipo",) else None
        )
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(BuildCancelledError):
                MergeEngine(toolchain, staging_root, cancel).merge(device, simulator, folder)
        finally:
            timer.cancel()

        assert time.monotonic() - start < 3
        assert not (folder / "Kit.framework").exists()

    def test_failed_lipo_leaves_destination_unchanged(
        self, toolchain, settings, checkout, folder, staging_root
    ):
        device, simulator = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        previous = folder / "Kit.framework"
        previous.mkdir(parents=True)
        (previous / "Kit").write_text("previous build")
        toolchain.fail = lambda task: task.arguments[:1] == ("lipo",)

        with pytest.raises(TaskError):
            MergeEngine(toolchain, staging_root).merge(device, simulator, folder)

        assert (previous / "Kit").read_text() == "previous build"


class TestCopyProduct:
    """Tests for MergeEngine.copy_product."""

    def test_copies_product(self, toolchain, settings, checkout, folder, staging_root):
        device, _ = build_pair(toolchain, settings, checkout, FakeTarget("Kit", ("iphoneos", "iphonesimulator")))
        product = MergeEngine(toolchain, staging_root).copy_product(device, folder)

        assert product == folder / "Kit.framework"
        assert binary_archs(product / "Kit") == ["arm64"]
        assert toolchain.commands("lipo") == []
