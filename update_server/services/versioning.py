"""
Dotted-numeric version helpers
"""
import re

from ..core.errors import ValidationError

# Published artifacts carry strict X.Y.Z versions
RELEASE_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

# Clients may report shorter or longer versions ("1.2" == "1.2.0")
CLIENT_VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*$")


def compare_versions(a: str, b: str) -> int:
    """
    Compare two dotted-numeric versions.

    Components are compared left to right as integers and missing trailing
    components count as 0. Returns -1, 0 or 1. Inputs must already be validated.
    """
    parts_a = [int(part) for part in a.split(".")]
    parts_b = [int(part) for part in b.split(".")]

    for i in range(max(len(parts_a), len(parts_b))):
        left = parts_a[i] if i < len(parts_a) else 0
        right = parts_b[i] if i < len(parts_b) else 0
        if left > right:
            return 1
        if left < right:
            return -1
    return 0


def require_release_version(value: str, field: str) -> str:
    if not isinstance(value, str) or not RELEASE_VERSION_PATTERN.match(value):
        raise ValidationError(f"{field}: version format must be X.Y.Z (e.g., 1.3.2)")
    return value


def require_client_version(value: str) -> str:
    if not value:
        raise ValidationError("Missing required field: clientVersion")
    if not isinstance(value, str) or not CLIENT_VERSION_PATTERN.match(value):
        raise ValidationError("clientVersion must be dotted numbers (e.g., 1.3.2)")
    return value
