"""
ASTER Version Management - Centralized version for all components

Single source of truth for the package version, read by the CLI banner.
"""

# =============================================================================
# ASTER Version - Single Source of Truth
# =============================================================================

__version__ = "0.4.0"

VERSION_MAJOR = 0
VERSION_MINOR = 4
VERSION_PATCH = 0
VERSION_SUFFIX = ""  # e.g., "alpha", "beta", "rc1", ""

VERSION_FULL = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"
if VERSION_SUFFIX:
    VERSION_FULL = f"{VERSION_FULL}-{VERSION_SUFFIX}"


def get_version() -> str:
    """Get the current ASTER version string."""
    return __version__


def get_short_banner() -> str:
    """Get a compact version banner for CLI output."""
    return f"ASTER v{VERSION_FULL} | document analysis with local LLMs"


VERSION = __version__
