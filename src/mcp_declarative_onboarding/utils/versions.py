"""Engine and schema version helpers."""
from .. import __version__

# Release counter of the running engine, appended as "<version>-<release>"
ENGINE_RELEASE = 3
ENGINE_VERSION = f"{__version__}-{ENGINE_RELEASE}"

SUPPORTED_SCHEMA_VERSIONS = [
    "1.23.0", "1.22.0", "1.21.0", "1.20.0", "1.19.0", "1.18.0",
    "1.17.0", "1.16.0", "1.15.0", "1.14.0", "1.13.0", "1.12.0",
    "1.11.0", "1.10.0", "1.9.0", "1.8.0", "1.7.0", "1.6.0",
    "1.5.0", "1.4.0", "1.3.0", "1.2.0", "1.1.0", "1.0.0",
]


def parse_version(version: str) -> tuple[int, ...]:
    """Parse "X.Y.Z" or "X.Y.Z-R" into a comparable tuple.

    Missing release counts as 0 and non-numeric parts are treated as 0.
    """
    base, _, release = str(version).partition("-")
    parts = []
    for piece in base.split("."):
        parts.append(int(piece) if piece.isdigit() else 0)
    while len(parts) < 3:
        parts.append(0)
    parts.append(int(release) if release.isdigit() else 0)
    return tuple(parts)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as version a is older, equal or newer than b."""
    pa, pb = parse_version(a), parse_version(b)
    if pa < pb:
        return -1
    if pa > pb:
        return 1
    return 0
