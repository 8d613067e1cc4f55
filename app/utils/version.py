"""
Version comparison utilities for database engine version changes.
Handles semantic versioning comparison and upgrade type detection.
"""
import re
from typing import Tuple, Optional
from enum import Enum


class UpgradeType(str, Enum):
    """Types of version upgrades."""

    PATCH = "patch"  # e.g., 8.0.35 -> 8.0.36
    MINOR = "minor"  # e.g., 8.0.x -> 8.4.x
    MAJOR = "major"  # e.g., 8.x.x -> 9.x.x
    UNKNOWN = "unknown"


def parse_version(version: str) -> Tuple[int, int, int]:
    """
    Parse a version string into (major, minor, patch) tuple.

    Supports the formats used by the operator engine catalogs:
    - "16.4" -> (16, 4, 0)
    - "8.0.36-28" -> (8, 0, 36)  # Ignores build suffix
    - "7.0.8-5" -> (7, 0, 8)
    - "percona-7.0.4" -> (7, 0, 4)  # Handles prefix

    Raises:
        ValueError: If version string cannot be parsed
    """
    version = re.sub(r"^(percona-|v)", "", version)

    match = re.search(r"(\d+)\.(\d+)(?:\.(\d+))?", version)

    if not match:
        raise ValueError(f"Cannot parse version: {version}")

    major = int(match.group(1))
    minor = int(match.group(2))
    patch = int(match.group(3)) if match.group(3) else 0

    return (major, minor, patch)


def compare_versions(version1: str, version2: str) -> int:
    """
    Compare two version strings.

    Returns:
        -1 if version1 < version2
         0 if version1 == version2
         1 if version1 > version2

    Raises:
        ValueError: If versions cannot be parsed
    """
    try:
        v1 = parse_version(version1)
        v2 = parse_version(version2)

        if v1 < v2:
            return -1
        elif v1 > v2:
            return 1
        else:
            return 0
    except ValueError as e:
        raise ValueError(f"Error comparing versions '{version1}' and '{version2}': {str(e)}")


def get_upgrade_type(current: str, target: str) -> UpgradeType:
    """
    Determine the type of upgrade between two versions.

    Returns:
        UpgradeType enum value (PATCH, MINOR, MAJOR, or UNKNOWN)
    """
    try:
        current_parts = parse_version(current)
        target_parts = parse_version(target)

        # Not an upgrade if target <= current
        if target_parts <= current_parts:
            return UpgradeType.UNKNOWN

        if target_parts[0] != current_parts[0]:
            return UpgradeType.MAJOR

        if target_parts[1] != current_parts[1]:
            return UpgradeType.MINOR

        if target_parts[2] != current_parts[2]:
            return UpgradeType.PATCH

        return UpgradeType.UNKNOWN

    except ValueError:
        return UpgradeType.UNKNOWN


def check_version_change(current: str, target: str) -> Optional[str]:
    """
    Check whether an engine may move from current to target version.

    Downgrades and major upgrades are refused; unchanged, patch and minor
    moves are allowed.

    Returns:
        None if allowed, otherwise the reason it is not
    """
    if current == target:
        return None

    try:
        order = compare_versions(current, target)
    except ValueError as e:
        return str(e)

    if order > 0:
        return f"Shrinking database cluster version from {current} to {target} is not allowed"

    if get_upgrade_type(current, target) == UpgradeType.MAJOR:
        return f"Major version upgrade from {current} to {target} is not supported"

    return None
