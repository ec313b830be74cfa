"""
Single source of truth for the SealedCompute package version.

In a wheel install, the version comes from importlib.metadata (set by
pyproject.toml).  During editable / dev installs the fallback is the
hardcoded _FALLBACK string.
"""

from importlib.metadata import PackageNotFoundError, version

_FALLBACK = "0.3.0"


def sealedcompute_version() -> str:
    """Return the installed package version, or a dev fallback."""
    try:
        return version("sealedcompute")
    except PackageNotFoundError:
        return _FALLBACK
