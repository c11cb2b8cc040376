"""Normalization of DEX response payloads.

DEX responses come back in several shapes depending on the operation and on
how many records matched: a bare list, a ``{"data": [...]}`` wrapper, a nested
collection such as ``{"Clients": {"Client": [...]}}`` or a single record
instead of a one-element list. Field names may be snake_case or PascalCase and
may live under a detail sub-object. Everything in this module is pure: it
never raises on unexpected shapes, it returns ``None`` or an empty list.
"""

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from dex_migration.resources import ResourceKindInfo

# Locations of the total-count hint, in lookup order
TOTAL_COUNT_PATHS = (
    "TotalCount",
    "totalCount",
    "total_count",
    "pagination.total_items",
    "pagination.TotalCount",
    "Pagination.TotalCount",
    "SearchResult.TotalCount",
    "Result.TotalCount",
)


def get_path(data: Any, path: str) -> Any:
    """Return the value at a dotted ``path`` inside nested mappings, or None."""
    current = data
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


def first_present(data: Any, paths: Iterable[str], default: Any = None) -> Any:
    """Return the value of the first path that resolves to something other than None."""
    for path in paths:
        value = get_path(data, path)
        if value is not None:
            return value
    return default


def pascal_case(name: str) -> str:
    """``outlet_activity_id`` -> ``OutletActivityId``."""
    return "".join(part[:1].upper() + part[1:] for part in name.split("_"))


def field_aliases(name: str, *extra: str) -> tuple[str, ...]:
    """Lookup paths for a canonical field: snake_case, PascalCase, then ``extra``."""
    return (name, pascal_case(name), *extra)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, Mapping):
        return [value]
    return []


@dataclass(frozen=True)
class ResponseShape:
    """One known layout of a search response."""

    name: str
    extract: Callable[[Any, ResourceKindInfo], list[Any]]


def _direct_list(payload: Any, info: ResourceKindInfo) -> list[Any]:
    return payload if isinstance(payload, list) else []


def _data_wrapper(payload: Any, info: ResourceKindInfo) -> list[Any]:
    return _as_list(get_path(payload, "data"))


def _nested_collection(payload: Any, info: ResourceKindInfo) -> list[Any]:
    return _as_list(get_path(payload, f"{info.collection_key}.{info.item_key}"))


def _item_wrapper(payload: Any, info: ResourceKindInfo) -> list[Any]:
    return _as_list(get_path(payload, info.item_key))


def _plural_key(payload: Any, info: ResourceKindInfo) -> list[Any]:
    return _as_list(get_path(payload, info.name))


# Priority order; the first shape yielding a non-empty list wins
RESPONSE_SHAPES: tuple[ResponseShape, ...] = (
    ResponseShape("list", _direct_list),
    ResponseShape("data", _data_wrapper),
    ResponseShape("collection", _nested_collection),
    ResponseShape("item", _item_wrapper),
    ResponseShape("plural", _plural_key),
)


@dataclass(frozen=True)
class ExtractedItems:
    """Items pulled out of a response and the shape they were found in."""

    shape: str | None
    items: list[dict[str, Any]]


def extract_items(payload: Any, info: ResourceKindInfo) -> ExtractedItems:
    """Coalesce a search response into a flat list of item mappings.

    Non-mapping entries are dropped. An empty or unrecognized payload gives an
    empty list with ``shape=None``.
    """
    for shape in RESPONSE_SHAPES:
        items = [item for item in shape.extract(payload, info) if isinstance(item, Mapping)]
        if items:
            return ExtractedItems(shape=shape.name, items=[dict(item) for item in items])
    return ExtractedItems(shape=None, items=[])


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value >= 0 else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return int(number) if math.isfinite(number) and number >= 0 else None
    return None


def extract_total_count(payload: Any) -> int | None:
    """Return the total-count hint from a search response, or None if absent.

    Zero is a valid hint.
    """
    for path in TOTAL_COUNT_PATHS:
        count = _as_count(get_path(payload, path))
        if count is not None:
            return count
    return None


def unwrap_record(payload: Any, info: ResourceKindInfo) -> dict[str, Any] | None:
    """Return the record inside a ``GetX`` response.

    ``{"Client": {...}}`` and ``{"data": {...}}`` are unwrapped; a plain record
    mapping is returned unchanged. Empty payloads give None.
    """
    if not isinstance(payload, Mapping) or not payload:
        return None
    for key in (info.item_key, "data"):
        inner = payload.get(key)
        if isinstance(inner, Mapping) and inner:
            return dict(inner)
    return dict(payload)


def _scalar_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def coerce_id_list(value: Any, item_key: str) -> list[str]:
    """Turn one of the known id-list shapes into a list of id strings.

    Accepted: a list of ids or of ``{item_key: id}`` objects, a single
    ``{item_key: ...}`` object, a comma-separated string, or one scalar id.
    Anything else yields an empty list.
    """
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]

    if isinstance(value, list):
        ids = []
        for entry in value:
            if isinstance(entry, Mapping):
                entry = entry.get(item_key)
            entry_id = _scalar_id(entry)
            if entry_id:
                ids.append(entry_id)
        return ids

    if isinstance(value, Mapping):
        if item_key in value:
            return coerce_id_list(value[item_key], item_key)
        return []

    single = _scalar_id(value)
    return [single] if single else []


def extract_id_list(data: Any, paths: Iterable[str], item_key: str) -> list[str]:
    """Return ids from the first path that yields a non-empty list."""
    for path in paths:
        value = get_path(data, path)
        if value is None:
            continue
        ids = coerce_id_list(value, item_key)
        if ids:
            return ids
    return []


CLIENT_ID_PATHS = (
    "client_ids",
    "ClientIds",
    "Case.Clients.CaseClient",
    "Clients.CaseClient",
    "Case.Clients",
    "Clients",
)

SESSION_ID_PATHS = (
    "session_ids",
    "sessions",
    "Sessions.SessionId",
    "Sessions.Session",
    "Sessions",
    "Case.Sessions.SessionId",
    "Case.Sessions",
)


def extract_client_ids(case_data: Any) -> list[str]:
    """Client ids linked to a case."""
    return extract_id_list(case_data, CLIENT_ID_PATHS, "ClientId")


def extract_session_ids(case_data: Any) -> list[str]:
    """Session ids listed on a case."""
    return extract_id_list(case_data, SESSION_ID_PATHS, "SessionId")


def project_fields(data: Any, field_paths: Mapping[str, tuple[str, ...]]) -> dict[str, Any]:
    """Build a canonical field map using first-match lookup per field."""
    return {name: first_present(data, paths) for name, paths in field_paths.items()}


def as_bool(value: Any, default: bool = False) -> bool:
    """Interpret DEX boolean flags, which arrive as bools, ints or strings."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y")
    return default


def as_int(value: Any, default: int | None = None) -> int | None:
    """Interpret an integer field, falling back to ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def as_float(value: Any, default: float | None = None) -> float | None:
    """Interpret a numeric field, falling back to ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def as_text(value: Any) -> str | None:
    """Interpret a text field; nested objects are not text."""
    if value is None or isinstance(value, (Mapping, list)):
        return None
    text = str(value).strip() if not isinstance(value, bool) else str(value).lower()
    return text or None
