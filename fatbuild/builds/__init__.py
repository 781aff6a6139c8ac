"""Build orchestration module.

This module handles:
- Settings caching and the derived data lock
- Scheme discovery
- Building one scheme for one SDK
- Merging device and simulator products
- Stripping products and recording what was built
"""

from fatbuild.builds.orchestrator import (
    BuildOrchestrator,
    SchemeFailed,
    SchemeStarted,
    SchemeSucceeded,
    collect_artifacts,
)

__all__ = [
    "BuildOrchestrator",
    "SchemeFailed",
    "SchemeStarted",
    "SchemeSucceeded",
    "collect_artifacts",
]

# Submodules are imported directly where needed,
# e.g. fatbuild.builds.merge or fatbuild.builds.strip
