"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from fatbuild.config import Settings
from tests.fakes import FakeToolchain


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every directory into the test's temp dir."""
    return Settings(
        xcrun_path="xcrun",
        derived_data_dir=tmp_path / "DerivedData",
        logs_dir=tmp_path / "logs",
    )


@pytest.fixture
def toolchain(settings: Settings) -> FakeToolchain:
    """Fake toolchain building into the settings' derived data."""
    return FakeToolchain(settings.derived_data_dir)


@pytest.fixture
def checkout(tmp_path: Path) -> Path:
    """Empty project checkout directory."""
    directory = tmp_path / "checkout"
    directory.mkdir()
    return directory
