"""
Tool version handling.
"""

import semver

__version__ = "0.3.0"


def parse_eksctl_version(value: str) -> semver.Version:
    """
    Parse a version string written into stack tags.

    A leading "v" is accepted and build metadata is dropped, so
    "v0.25.0-dev+a3b1c2d" parses to 0.25.0-dev.

    Raises:
        ValueError: If the value is not a semantic version
    """
    version = semver.Version.parse(value.strip().lstrip("v"))
    return version.replace(build=None)


def get_version() -> semver.Version:
    """Get the running tool version."""
    return parse_eksctl_version(__version__)
