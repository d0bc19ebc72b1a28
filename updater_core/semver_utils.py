import re
from typing import Any, Optional, Tuple

_SEMVER_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.-]+))?")


def parse_semver(version: str) -> Optional[Tuple[int, int, int, Optional[Tuple[Any, ...]]]]:
    """Parse the first semantic version found in ``version``.

    Tolerates prefixes such as 'v' or 'n8n '. Returns
    (major, minor, patch, prerelease identifiers or None), or None when the
    text holds no version (e.g. 'not running', 'unknown').
    """
    m = _SEMVER_RE.search(version or '')
    if not m:
        return None
    pre = None
    if m.group(4):
        # numeric identifiers with a leading zero are compared as text
        pre = tuple(
            int(ident) if ident.isdigit() and not (len(ident) > 1 and ident[0] == '0') else ident
            for ident in m.group(4).split('.')
        )
    return int(m.group(1)), int(m.group(2)), int(m.group(3)), pre


def _precedence_key(parsed):
    major, minor, patch, pre = parsed
    if pre is None:
        return (major, minor, patch, 1, ())
    # numeric identifiers sort below alphanumeric ones
    idents = tuple((0, i, '') if isinstance(i, int) else (1, 0, i) for i in pre)
    return (major, minor, patch, 0, idents)


def compare_semver(version1: str, version2: str) -> Optional[int]:
    """1 if v1 > v2, -1 if v1 < v2, 0 if equal, None if either is not a version."""
    p1, p2 = parse_semver(version1), parse_semver(version2)
    if p1 is None or p2 is None:
        return None
    k1, k2 = _precedence_key(p1), _precedence_key(p2)
    if k1 == k2:
        return 0
    return 1 if k1 > k2 else -1


def version_direction(before: str, after: str) -> Optional[str]:
    """'upgrade', 'downgrade' or 'same' between two version strings, None if not comparable."""
    result = compare_semver(after, before)
    if result is None:
        return None
    return {1: 'upgrade', -1: 'downgrade', 0: 'same'}[result]
