"""Xcode project model.

This module handles:
- Project and workspace discovery, scheme listing
- xcodebuild argument composition
- Build settings parsing
- Simulator selection and framework bundle inspection
"""

from fatbuild.xcode.project import BuildArguments, ProjectKind, ProjectLocator, Scheme
from fatbuild.xcode.settings import BuildSettings, parse_build_settings

__all__ = [
    "BuildArguments",
    "BuildSettings",
    "ProjectKind",
    "ProjectLocator",
    "Scheme",
    "parse_build_settings",
]
