"""
Index diff engine.

Compares the declared indexes of a collection with the live ones and
works out which live indexes to drop and which declarations to create.
Everything here is pure; no I/O.

Equivalence is decided by an IndexSignature: the key pattern (order
sensitive), the resolved name and the options that change what an
index is. Option values the store fills in on its own (collation
defaults, text index weights and versions, ...) are filled in on the
declared side as well, so an index read back from the store compares
equal to the declaration it was created from.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from mongo_collections.models.index import IndexDeclaration, LiveIndexDescriptor

DEFAULT_TEXT_INDEX_VERSION = 3
DEFAULT_SPHERE_INDEX_VERSION = 3

# Options that are part of an index's identity, named as the store names them.
IDENTITY_OPTIONS = (
    "unique",
    "sparse",
    "expireAfterSeconds",
    "partialFilterExpression",
    "collation",
    "hidden",
    "bits",
    "min",
    "max",
    "default_language",
    "language_override",
    "weights",
    "textIndexVersion",
    "2dsphereIndexVersion",
    "wildcardProjection",
)

# Values equivalent to leaving the option out.
DEFAULT_OPTION_VALUES = {
    "unique": False,
    "sparse": False,
    "hidden": False,
    "bits": 26,
    "min": -180,
    "max": 180,
    "default_language": "english",
    "language_override": "language",
}

COLLATION_DEFAULTS = {
    "caseLevel": False,
    "caseFirst": "off",
    "strength": 3,
    "numericOrdering": False,
    "alternate": "non-ignorable",
    "maxVariable": "punct",
    "normalization": False,
    "backwards": False,
}

_TEXT_KEY_FIELDS = ("_fts", "_ftsx")
_TEXT_MARKER = "$text"


@dataclass(frozen=True)
class IndexSignature:
    """Comparable identity of an index."""
    name: str
    keys: tuple
    options: tuple


@dataclass(frozen=True)
class IndexOperation:
    """One step of an index diff."""
    kind: str  # "drop" or "create"
    name: str
    index: Optional[IndexDeclaration] = None


@dataclass
class IndexDiff:
    """Indexes to drop (by name) and to create."""
    to_drop: list[str] = field(default_factory=list)
    to_create: list[IndexDeclaration] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_drop and not self.to_create

    @property
    def operations(self) -> list[IndexOperation]:
        """Drops first, then creates."""
        drops = [IndexOperation("drop", name) for name in self.to_drop]
        creates = [
            IndexOperation("create", resolved_name(index), index)
            for index in self.to_create
        ]
        return drops + creates


def _canonical(value: Any) -> Any:
    """Hashable form of an option value; mapping key order is ignored."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), _canonical(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_canonical(v) for v in value)
    return value


def generated_name(key_pattern: Iterable[tuple[str, Any]]) -> str:
    """Name the store gives an index that was created without one."""
    return "_".join(f"{name}_{_canonical(value)}" for name, value in key_pattern)


def resolved_name(index: IndexDeclaration) -> str:
    return index.name or generated_name(index.key_pattern())


def _normalize_collation(collation: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    if not collation:
        return None
    result = {k: v for k, v in collation.items() if k != "version" and v is not None}
    if result.get("locale") == "simple":
        return None
    for name, default in COLLATION_DEFAULTS.items():
        result.setdefault(name, default)
    return result


def _is_text_pattern(key_pattern: Sequence[tuple[str, Any]]) -> bool:
    return any(value == "text" or name in _TEXT_KEY_FIELDS for name, value in key_pattern)


def _normalize_options(
    options: Mapping[str, Any],
    key_pattern: Sequence[tuple[str, Any]],
    default_collation: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    result = {
        name: options[name]
        for name in IDENTITY_OPTIONS
        if options.get(name) is not None
    }

    for name, default in DEFAULT_OPTION_VALUES.items():
        if name in result and _canonical(result[name]) == default:
            del result[name]

    collation = result.pop("collation", None)
    if collation is None:
        collation = default_collation
    collation = _normalize_collation(collation)
    if collation is not None:
        result["collation"] = collation

    if _is_text_pattern(key_pattern):
        weights = {
            name: 1
            for name, value in key_pattern
            if value == "text" and name not in _TEXT_KEY_FIELDS
        }
        weights.update(result.get("weights") or {})
        result["weights"] = weights
        result.setdefault("textIndexVersion", DEFAULT_TEXT_INDEX_VERSION)
    if any(value == "2dsphere" for _, value in key_pattern):
        result.setdefault("2dsphereIndexVersion", DEFAULT_SPHERE_INDEX_VERSION)

    return result


def _normalize_keys(
    key_pattern: Sequence[tuple[str, Any]],
    weights: Optional[Mapping[str, Any]],
) -> tuple:
    """
    Key pattern as a tuple, order preserved.

    Text keys collapse into one marker holding the sorted text fields, so
    the declared form and the store's ``_fts``/``_ftsx`` form compare equal.
    """
    keys: list[tuple[str, Any]] = []
    text_position: Optional[int] = None
    for name, value in key_pattern:
        if value == "text" or name in _TEXT_KEY_FIELDS:
            if text_position is None:
                text_position = len(keys)
            continue
        keys.append((name, _canonical(value)))
    if text_position is not None:
        keys.insert(text_position, (_TEXT_MARKER, tuple(sorted(weights or {}))))
    return tuple(keys)


def _signature(
    name: str,
    key_pattern: Sequence[tuple[str, Any]],
    options: Mapping[str, Any],
    default_collation: Optional[Mapping[str, Any]] = None,
) -> IndexSignature:
    normalized = _normalize_options(options, key_pattern, default_collation)
    return IndexSignature(
        name=name,
        keys=_normalize_keys(key_pattern, normalized.get("weights")),
        options=_canonical(normalized),
    )


def declared_signature(
    index: IndexDeclaration,
    default_collation: Optional[Mapping[str, Any]] = None,
) -> IndexSignature:
    """
    Signature of a declared index.

    An index declared without collation inherits the collection's
    default collation, as the store does when creating it.
    """
    return _signature(
        resolved_name(index),
        index.key_pattern(),
        index.options.to_document(),
        default_collation,
    )


def live_signature(index: LiveIndexDescriptor) -> IndexSignature:
    return _signature(index.name, index.keys, index.options)


def diff(
    desired: Sequence[IndexDeclaration],
    live: Sequence[LiveIndexDescriptor],
    default_collation: Optional[Mapping[str, Any]] = None,
) -> IndexDiff:
    """
    Work out the index operations that turn ``live`` into ``desired``.

    The default ``_id_`` index is never touched. An index whose options
    changed shows up in both lists: it is dropped and created again.
    Drops are sorted by name, creates keep the declared order.
    """
    live_signatures = {
        index.name: live_signature(index)
        for index in live
        if not index.is_default
    }
    existing = set(live_signatures.values())

    wanted: set[IndexSignature] = set()
    to_create: list[IndexDeclaration] = []
    for index in desired:
        signature = declared_signature(index, default_collation)
        if signature in wanted:
            continue
        wanted.add(signature)
        if signature not in existing:
            to_create.append(index)

    to_drop = sorted(
        name for name, signature in live_signatures.items() if signature not in wanted
    )
    return IndexDiff(to_drop=to_drop, to_create=to_create)
