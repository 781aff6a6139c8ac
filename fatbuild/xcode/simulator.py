"""Simulator selection.

Parses ``xcrun simctl list devices --json`` and selects an available
simulator of the newest runtime for a platform. Both the current runtime
identifiers (``com.apple.CoreSimulator.SimRuntime.iOS-12-0``) and the
legacy ones (``iOS 12.0``) are understood.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fatbuild.errors import ParseError
from fatbuild.types import SDK

logger = logging.getLogger(__name__)

RUNTIME_PATTERN = re.compile(
    r"^(?:com\.apple\.CoreSimulator\.SimRuntime\.)?(?P<platform>[A-Za-z]+)[- ](?P<version>[0-9]+(?:[-.][0-9]+)*)$"
)


class SimulatorDevice(BaseModel):
    """One simulator device entry."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    udid: str
    name: str
    is_available: bool | None = Field(default=None, alias="isAvailable")
    availability: str | None = None

    @property
    def available(self) -> bool:
        if self.is_available is not None:
            return self.is_available
        return self.availability == "(available)"


class SimulatorDeviceList(BaseModel):
    """Top level of the simctl JSON output."""

    model_config = ConfigDict(extra="ignore")

    devices: dict[str, list[SimulatorDevice]] = Field(default_factory=dict)


def parse_runtime(identifier: str) -> tuple[str, tuple[int, ...]] | None:
    """Split a runtime identifier into (platform name, version)."""
    match = RUNTIME_PATTERN.match(identifier)
    if match is None:
        return None
    version = tuple(int(part) for part in re.split(r"[-.]", match.group("version")))
    return match.group("platform"), version


def select_available_simulator(sdk: SDK, data: bytes | str) -> SimulatorDevice | None:
    """Select an available simulator for a simulator SDK.

    Args:
        sdk: Simulator SDK to build for.
        data: JSON output of ``simctl list devices --json``.

    Returns:
        The first available device of the newest runtime for the SDK's
        platform, or None.

    Raises:
        ParseError: If the JSON cannot be parsed.
    """
    try:
        device_list = SimulatorDeviceList.model_validate_json(data)
    except ValidationError as e:
        raise ParseError(f"invalid simctl device list: {e}") from e

    platform_name = sdk.platform.value
    candidates: list[tuple[tuple[int, ...], SimulatorDevice]] = []
    for identifier, devices in device_list.devices.items():
        runtime = parse_runtime(identifier)
        if runtime is None or runtime[0] != platform_name:
            continue
        available = [device for device in devices if device.available]
        if available:
            candidates.append((runtime[1], available[0]))

    if not candidates:
        logger.warning("No available %s simulator found", platform_name)
        return None

    version, device = max(candidates, key=lambda candidate: candidate[0])
    logger.debug(
        "Selected simulator %s (%s) running %s %s",
        device.name,
        device.udid,
        platform_name,
        ".".join(str(part) for part in version),
    )
    return device


__all__ = [
    "SimulatorDevice",
    "SimulatorDeviceList",
    "parse_runtime",
    "select_available_simulator",
]
