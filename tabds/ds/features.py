"""Column types of a tabular dataset.

A :class:`Features` mapping declares, for every column, one of:

* :class:`Value` - a scalar of a fixed dtype (``int64``, ``float32``,
  ``string``, ...);
* :class:`ClassLabel` - an integer category with optional names;
* :class:`Sequence` - a variable-length list of one of the above.

Features encode raw python examples before they are written to disk and
serialise to plain dicts for ``dataset_info.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

import numpy as np

_INT_DTYPES = ("int8", "int16", "int32", "int64", "uint8", "uint16", "uint32", "uint64")
_FLOAT_DTYPES = ("float16", "float32", "float64")
_DTYPES = ("bool", *_INT_DTYPES, *_FLOAT_DTYPES, "string")
_DTYPE_ALIASES = {
    "int": "int64",
    "float": "float64",
    "double": "float64",
    "str": "string",
    "boolean": "bool",
}
_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "t"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "f"})


@dataclass
class Value:
    """A scalar column of a single dtype."""

    dtype: str
    _type: str = field(default="Value", init=False, repr=False)

    def __post_init__(self) -> None:
        self.dtype = _DTYPE_ALIASES.get(self.dtype, self.dtype)
        if self.dtype not in _DTYPES:
            raise ValueError(f"Unsupported dtype '{self.dtype}', expected one of {_DTYPES}")

    @property
    def numpy_dtype(self) -> np.dtype | None:
        """Storage dtype, or ``None`` for strings (width is chosen per chunk)."""
        if self.dtype == "string":
            return None
        return np.dtype(self.dtype)

    def encode_example(self, value: Any) -> Any:
        if value is None:
            return None
        if self.dtype == "string":
            return value if isinstance(value, str) else str(value)
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                return None
        if self.dtype == "bool":
            return _to_bool(value)
        if self.dtype in _INT_DTYPES:
            return _to_int(value, self.dtype)
        return float(value)

    def to_dict(self) -> dict[str, Any]:
        return {"dtype": self.dtype, "_type": self._type}


@dataclass
class ClassLabel:
    """Integer category column.

    Either ``names`` or ``num_classes`` must be given. ``-1`` encodes a
    missing label.
    """

    names: list[str] = field(default_factory=list)
    num_classes: int | None = None
    _type: str = field(default="ClassLabel", init=False, repr=False)

    def __post_init__(self) -> None:
        if self.names:
            self.names = [str(n) for n in self.names]
            if len(set(self.names)) != len(self.names):
                raise ValueError(f"ClassLabel names must be unique: {self.names}")
            if self.num_classes is not None and self.num_classes != len(self.names):
                raise ValueError(
                    f"ClassLabel num_classes={self.num_classes} does not match {len(self.names)} names"
                )
            self.num_classes = len(self.names)
        elif self.num_classes is not None:
            self.names = [str(i) for i in range(self.num_classes)]
        else:
            raise ValueError("ClassLabel requires either names or num_classes")
        self._str2int = {name: i for i, name in enumerate(self.names)}

    dtype = "int64"
    numpy_dtype = np.dtype("int64")

    def str2int(self, name: str) -> int:
        try:
            return self._str2int[str(name).strip()]
        except KeyError:
            raise ValueError(f"Invalid label '{name}', expected one of {self.names}") from None

    def int2str(self, index: int) -> str:
        if not 0 <= index < len(self.names):
            raise ValueError(f"Invalid label index {index}, expected 0 <= index < {len(self.names)}")
        return self.names[index]

    def encode_example(self, value: Any) -> int | None:
        if value is None:
            return None
        if isinstance(value, str):
            return self.str2int(value)
        index = int(value)
        if not -1 <= index < len(self.names):
            raise ValueError(f"Class label {index} out of range [-1, {len(self.names)})")
        return index

    def to_dict(self) -> dict[str, Any]:
        return {"names": list(self.names), "_type": self._type}


@dataclass
class Sequence:
    """A variable-length list column."""

    feature: Value | ClassLabel
    _type: str = field(default="Sequence", init=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.feature, (Value, ClassLabel)):
            raise ValueError(f"Sequence only supports Value or ClassLabel items, got {self.feature!r}")

    def encode_example(self, value: Any) -> list | None:
        if value is None:
            return None
        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            raise ValueError(f"Expected a list for Sequence feature, got {type(value).__name__}")
        return [self.feature.encode_example(v) for v in value]

    def to_dict(self) -> dict[str, Any]:
        return {"feature": self.feature.to_dict(), "_type": self._type}


FeatureType = Union[Value, ClassLabel, Sequence]


def _to_bool(value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        low = value.lower()
        if low in _TRUE_STRINGS:
            return True
        if low in _FALSE_STRINGS:
            return False
        raise ValueError(f"Cannot convert {value!r} to bool")
    if value in (0, 1):
        return bool(value)
    raise ValueError(f"Cannot convert {value!r} to bool")


def _to_int(value: Any, dtype: str) -> int:
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Cannot convert {value!r} to {dtype} without losing precision")
        result = int(value)
    else:
        result = int(value)
    info = np.iinfo(dtype)
    if not info.min <= result <= info.max:
        raise ValueError(f"Value {result} out of range for {dtype}")
    return result


def feature_from_dict(d: dict[str, Any]) -> FeatureType:
    """Rebuild a feature from its :meth:`to_dict` form."""
    kind = d.get("_type")
    if kind == "Value":
        return Value(d["dtype"])
    if kind == "ClassLabel":
        return ClassLabel(names=d.get("names") or [], num_classes=d.get("num_classes"))
    if kind == "Sequence":
        inner = feature_from_dict(d["feature"])
        if isinstance(inner, Sequence):
            raise ValueError("Nested Sequence features are not supported")
        return Sequence(inner)
    raise ValueError(f"Unknown feature type: {kind!r}")


def infer_feature(value: Any) -> FeatureType:
    """Guess a feature type from one python value."""
    if isinstance(value, (bool, np.bool_)):
        return Value("bool")
    if isinstance(value, (int, np.integer)):
        return Value("int64")
    if isinstance(value, (float, np.floating)):
        return Value("float64")
    if isinstance(value, (list, tuple)):
        first = next((v for v in value if v is not None), None)
        if first is None:
            return Sequence(Value("string"))
        inner = infer_feature(first)
        if isinstance(inner, Sequence):
            raise ValueError("Nested lists are not supported")
        return Sequence(inner)
    if isinstance(value, dict):
        raise ValueError("Nested mappings are not supported, flatten the example first")
    return Value("string")


class Features(dict):
    """Ordered mapping of column name to feature type."""

    def encode_example(self, example: dict[str, Any]) -> dict[str, Any]:
        """Validate and encode one example.

        Missing columns become ``None``; unknown columns raise ``ValueError``.
        """
        extra = set(example) - set(self)
        if extra:
            raise ValueError(f"Example has columns not in features: {sorted(extra)}")
        return {name: feature.encode_example(example.get(name)) for name, feature in self.items()}

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: feature.to_dict() for name, feature in self.items()}

    @classmethod
    def from_dict(cls, d: dict[str, dict[str, Any]]) -> Features:
        return cls({name: feature_from_dict(fd) for name, fd in d.items()})

    @classmethod
    def infer(cls, example: dict[str, Any]) -> Features:
        return cls({name: infer_feature(value) for name, value in example.items()})

    @classmethod
    def infer_batch(cls, examples: list[dict[str, Any]]) -> Features:
        """Infer from several examples.

        ``int64`` and ``float64`` widen to ``float64``; any other conflict
        falls back to ``string`` (or ``Sequence(string)`` for two list
        types). All-``None`` columns become strings.
        """
        inferred: dict[str, FeatureType | None] = {}
        for example in examples:
            for name, value in example.items():
                current = inferred.setdefault(name, None)
                if value is None:
                    continue
                feature = infer_feature(value)
                if current is None:
                    inferred[name] = feature
                elif current != feature:
                    inferred[name] = _merge(current, feature)
        return cls({name: f if f is not None else Value("string") for name, f in inferred.items()})

    def copy(self) -> Features:
        return Features(self)


def _dtype_of(feature: FeatureType) -> str | None:
    if isinstance(feature, Sequence):
        return _dtype_of(feature.feature)
    return feature.dtype


def _merge(a: FeatureType, b: FeatureType) -> FeatureType:
    both_lists = isinstance(a, Sequence) and isinstance(b, Sequence)
    if isinstance(a, Sequence) != isinstance(b, Sequence):
        return Value("string")
    if {_dtype_of(a), _dtype_of(b)} == {"int64", "float64"}:
        return Sequence(Value("float64")) if both_lists else Value("float64")
    return Sequence(Value("string")) if both_lists else Value("string")
