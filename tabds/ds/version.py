"""Semantic version of a dataset builder."""

from __future__ import annotations

import functools
import re

_VERSION_RE = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)$")


@functools.total_ordering
class Version:
    """A ``MAJOR.MINOR.PATCH`` version string.

    Compares equal to another :class:`Version` or to a plain string with the
    same numbers, so ``Version("1.0.0") == "1.0.0"``.
    """

    def __init__(self, version_str: str, description: str | None = None) -> None:
        self.major, self.minor, self.patch = _parse(version_str)
        self.version_str = f"{self.major}.{self.minor}.{self.patch}"
        self.description = description

    @property
    def tuple(self) -> tuple[int, int, int]:
        return self.major, self.minor, self.patch

    def _coerce(self, other: object) -> Version:
        if isinstance(other, Version):
            return other
        if isinstance(other, str):
            return Version(other)
        raise TypeError(f"{other!r} (type {type(other).__name__}) cannot be compared to a version")

    def __eq__(self, other: object) -> bool:
        try:
            return self.tuple == self._coerce(other).tuple
        except (TypeError, ValueError):
            return False

    def __lt__(self, other: object) -> bool:
        return self.tuple < self._coerce(other).tuple

    def __hash__(self) -> int:
        return hash(self.tuple)

    def __str__(self) -> str:
        return self.version_str

    def __repr__(self) -> str:
        return f"Version({self.version_str!r})"


def _parse(version_str: str) -> tuple[int, int, int]:
    res = _VERSION_RE.match(str(version_str).strip())
    if not res:
        raise ValueError(f"Invalid version '{version_str}'. Format should be x.y.z with {{x,y,z}} being digits.")
    return int(res.group("major")), int(res.group("minor")), int(res.group("patch"))
