"""
Upload eligibility filter.

Decides whether a build output should be pushed. Source and temporary
derivations are skipped; everything else is accepted.
"""

import logging
import posixpath
import re
from fnmatch import fnmatchcase
from typing import Iterable, Tuple

from pushagent.config.parser import DEFAULT_EXCLUDE_PATTERNS

logger = logging.getLogger(__name__)

_GLOB_CHARS = re.compile(r"[*?\[]")


def _name(value: str) -> str:
    return posixpath.basename(value.rstrip("/")) if value else ""


class PathFilter:
    """
    Reject outputs whose derivation id or store path matches an exclude pattern.

    Patterns are matched against the final path component (the store name)
    of the derivation id and of the output path, so the store directory
    itself never matches. A pattern containing glob characters (``*``, ``?``,
    ``[``) is matched with ``fnmatch`` semantics; a plain pattern is a suffix
    marker (``-source.drv``). A pattern that cannot be evaluated is
    ignored, so the path is accepted.

    Example:
        >>> path_filter = PathFilter(["*-source.drv", "*tmp*"])
        >>> path_filter.accept("/nix/store/abc-hello", "/nix/store/xyz-hello.drv")
        True
        >>> path_filter.accept("/nix/store/abc-src", "/nix/store/xyz-src-source.drv")
        False
    """

    def __init__(self, patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS):
        self.patterns: Tuple[str, ...] = tuple(p for p in patterns if p)

    def accept(self, path: str, derivation_id: str) -> bool:
        """
        Decide whether a store path is eligible for upload.

        Args:
            path: Output store path
            derivation_id: Derivation that produced the path

        Returns:
            False if any pattern matches, True otherwise
        """
        for pattern in self.patterns:
            if self._matches(pattern, _name(derivation_id)) or self._matches(
                pattern, _name(path)
            ):
                logger.debug(
                    f"Skipping {path} ({derivation_id}): matches exclude '{pattern}'"
                )
                return False
        return True

    @staticmethod
    def _matches(pattern: str, value: str) -> bool:
        if not value:
            return False
        try:
            if _GLOB_CHARS.search(pattern):
                return fnmatchcase(value, pattern)
            return value.endswith(pattern)
        except (re.error, TypeError) as e:
            logger.debug(f"Ignoring exclude pattern '{pattern}': {e}")
            return False
