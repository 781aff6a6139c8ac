"""fatbuild - Build framework binaries for project dependencies.

This package drives the platform build toolchain (xcodebuild, lipo,
dsymutil, ...) to produce one framework per platform for every buildable
scheme of a dependency, merging device and simulator builds into a single
fat binary where both exist.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
