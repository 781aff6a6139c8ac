"""Tests for shared types."""

import pytest

from fatbuild.types import SDK, Dependency, Platform, split_sdks


class TestPlatform:
    """Tests for Platform."""

    def test_directory_names(self):
        assert Platform.MACOS.directory_name == "Mac"
        assert Platform.IOS.directory_name == "iOS"
        assert Platform.WATCHOS.directory_name == "watchOS"

    @pytest.mark.parametrize("name", ["mac", "macOS", "MacOS", " mac "])
    def test_parse_mac(self, name):
        assert Platform.parse(name) is Platform.MACOS

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            Platform.parse("android")


class TestSDK:
    """Tests for SDK."""

    def test_platforms(self):
        assert SDK.MACOSX.platform is Platform.MACOS
        assert SDK.IPHONESIMULATOR.platform is Platform.IOS
        assert SDK.APPLETVOS.platform is Platform.TVOS
        assert SDK.WATCHSIMULATOR.platform is Platform.WATCHOS

    def test_device_and_simulator(self):
        assert SDK.IPHONEOS.is_device
        assert SDK.IPHONESIMULATOR.is_simulator
        assert SDK.MACOSX.is_device

    def test_bitcode_requirement(self):
        assert SDK.APPLETVOS.requires_bitcode
        assert SDK.WATCHOS.requires_bitcode
        assert not SDK.IPHONEOS.requires_bitcode

    def test_from_name(self):
        assert SDK.from_name("iphoneos") is SDK.IPHONEOS
        assert SDK.from_name("driverkit") is None

    def test_split_sdks(self):
        simulators, devices = split_sdks([SDK.IPHONESIMULATOR, SDK.IPHONEOS])
        assert simulators == [SDK.IPHONESIMULATOR]
        assert devices == [SDK.IPHONEOS]


class TestDependency:
    """Tests for Dependency."""

    def test_str_prefers_repository(self):
        assert str(Dependency("Kit", "Carthage/Checkouts/Kit", "1.0")) == "Kit"
        assert str(Dependency("Kit", "Carthage/Checkouts/Kit", "1.0", "acme/Kit")) == "acme/Kit"
