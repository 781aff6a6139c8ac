"""Tests for builds/strip.py module."""

from pathlib import Path

import pytest

from fatbuild.builds.strip import (
    strip_binary,
    strip_directory,
    strip_framework,
)
from tests.fakes import FakeToolchain, binary_archs, read_binary, write_binary


@pytest.fixture
def framework(tmp_path: Path) -> Path:
    framework = tmp_path / "Kit.framework"
    write_binary(framework / "Kit", ["arm64", "x86_64"])
    for name in ("Headers", "PrivateHeaders", "Modules"):
        (framework / name).mkdir()
        (framework / name / "placeholder").write_text(name)
    return framework


class TestStripBinary:
    """Tests for strip_binary."""

    def test_removes_unwanted_architectures(self, toolchain: FakeToolchain, framework: Path):
        removed = strip_binary(toolchain, framework, {"arm64"})
        assert removed == ["x86_64"]
        assert binary_archs(framework / "Kit") == ["arm64"]

    def test_nothing_to_remove(self, toolchain: FakeToolchain, framework: Path):
        assert strip_binary(toolchain, framework, {"arm64", "x86_64"}) == []
        assert toolchain.commands("lipo") == [("lipo", "-info", str(framework / "Kit"))]


class TestStripDirectory:
    """Tests for strip_directory."""

    def test_missing_directory_is_fine(self, tmp_path: Path):
        assert strip_directory(tmp_path, "Headers") is False

    def test_symlinked_directory(self, tmp_path: Path):
        """macOS frameworks link Headers to Versions/Current/Headers."""
        (tmp_path / "Versions" / "A" / "Headers").mkdir(parents=True)
        (tmp_path / "Headers").symlink_to(Path("Versions") / "A" / "Headers")
        assert strip_directory(tmp_path, "Headers") is True
        assert not (tmp_path / "Headers").exists()
        assert not (tmp_path / "Headers").is_symlink()


class TestStripFramework:
    """Tests for strip_framework."""

    def test_strip_for_embedding(self, toolchain: FakeToolchain, framework: Path):
        """Only kept architectures remain and header/module directories are gone."""
        strip_framework(toolchain, framework, ["arm64"])

        assert binary_archs(framework / "Kit") == ["arm64"]
        for name in ("Headers", "PrivateHeaders", "Modules"):
            assert not (framework / name).exists()
        assert toolchain.signed == []

    def test_idempotent(self, toolchain: FakeToolchain, framework: Path):
        strip_framework(toolchain, framework, ["arm64"])
        strip_framework(toolchain, framework, ["arm64"])

        assert binary_archs(framework / "Kit") == ["arm64"]
        assert not (framework / "Headers").exists()

    def test_debug_symbols_and_signing(self, toolchain: FakeToolchain, framework: Path):
        """Signing comes last, after every binary change."""
        strip_framework(
            toolchain,
            framework,
            ["arm64"],
            strip_debug=True,
            codesigning_identity="Apple Development",
        )

        assert read_binary(framework / "Kit")["DEBUG"] == "NO"
        tools = [call.arguments[0] for call in toolchain.calls]
        assert tools[-1] == "codesign"
        assert toolchain.calls[-1].arguments == (
            "codesign",
            "--force",
            "--sign",
            "Apple Development",
            "--preserve-metadata=identifier,entitlements",
            str(framework),
        )
