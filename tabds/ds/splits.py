"""Split names, split metadata and split-selection expressions."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from tabds.ds.types import SplitNotFoundError

_SPLIT_NAME_RE = re.compile(r"^[\w-]+$")
_SLICE_RE = re.compile(
    r"^(?P<name>[\w-]+)"
    r"(?:\[(?P<start>-?\d+%?)?:(?P<stop>-?\d+%?)?\])?$"
)


class Split(str, Enum):
    """Canonical split names. Any other ``[\\w-]+`` string is a valid split too."""

    TRAIN = "train"
    VALIDATION = "validation"
    TEST = "test"

    def __str__(self) -> str:
        return self.value


def validate_split_name(name: str) -> str:
    name = str(name)
    if not _SPLIT_NAME_RE.match(name):
        raise ValueError(f"Split name should match '{_SPLIT_NAME_RE.pattern}' but got '{name}'")
    return name


@dataclass
class SplitInfo:
    name: str
    num_bytes: int = 0
    num_examples: int = 0
    shard_lengths: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SplitDict(dict):
    """Ordered ``name -> SplitInfo`` mapping."""

    def add(self, split_info: SplitInfo) -> None:
        self[split_info.name] = split_info

    @property
    def total_num_examples(self) -> int:
        return sum(s.num_examples for s in self.values())

    @property
    def total_num_bytes(self) -> int:
        return sum(s.num_bytes for s in self.values())

    def to_list(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.values()]

    @classmethod
    def from_list(cls, items: list[dict[str, Any]] | None) -> SplitDict:
        sd = cls()
        for item in items or []:
            sd.add(
                SplitInfo(
                    name=item["name"],
                    num_bytes=int(item.get("num_bytes", 0)),
                    num_examples=int(item.get("num_examples", 0)),
                    shard_lengths=list(item.get("shard_lengths") or []),
                )
            )
        return sd


@dataclass
class SplitGenerator:
    """One split to generate, with the kwargs passed to ``_generate_examples``."""

    name: str
    gen_kwargs: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.name = validate_split_name(self.name)


# ---------------------------------------------------------------------------
# Split selection ("train[:10%]+test")
# ---------------------------------------------------------------------------

@dataclass
class SplitSlice:
    """One ``name[start:stop]`` term of a split expression."""

    name: str
    start: str | None = None
    stop: str | None = None

    def resolve(self, num_examples: int) -> tuple[int, int]:
        """Turn the bounds into absolute ``[start, stop)`` row indices."""
        start = _resolve_bound(self.start, num_examples, default=0)
        stop = _resolve_bound(self.stop, num_examples, default=num_examples)
        return start, max(start, stop)


def _resolve_bound(bound: str | None, n: int, default: int) -> int:
    if bound is None:
        return default
    if bound.endswith("%"):
        pct = int(bound[:-1])
        if not -100 <= pct <= 100:
            raise ValueError(f"Percent slice boundaries must be within [-100, 100], got {bound}")
        value = int(round(pct * n / 100))
    else:
        value = int(bound)
    if value < 0:
        value += n
    return min(max(value, 0), n)


def parse_split_expression(expr: str) -> list[SplitSlice]:
    """Parse ``"train[:10%]+test"`` into slices.

    Raises:
        ValueError: If any term is malformed.
    """
    expr = str(expr).replace(" ", "")
    if not expr:
        raise ValueError("Empty split expression")
    slices: list[SplitSlice] = []
    for term in expr.split("+"):
        res = _SLICE_RE.match(term)
        if not res:
            raise ValueError(f"Unrecognized split format: '{term}'")
        start, stop = res.group("start"), res.group("stop")
        if start and stop and start.endswith("%") != stop.endswith("%"):
            raise ValueError(f"Cannot mix percent and absolute boundaries in '{term}'")
        slices.append(SplitSlice(res.group("name"), start, stop))
    return slices


def check_splits_exist(slices: list[SplitSlice], available: list[str]) -> None:
    for s in slices:
        if s.name not in available:
            raise SplitNotFoundError(f"Unknown split '{s.name}'. Should be one of {list(available)}.")
