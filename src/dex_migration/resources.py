"""Resource kind registry.

Every module that needs to know how a DEX resource kind is searched, fetched
or identified looks it up here instead of hardcoding operation names.
"""

from dataclasses import dataclass, field

from dex_migration.client.exceptions import ResourceKindError


@dataclass(frozen=True)
class ResourceKindInfo:
    """Metadata for a migratable resource kind."""

    name: str
    singular: str
    id_field: str
    search_operation: str
    get_operation: str
    # Key under which a single record is wrapped, e.g. {"Client": {...}}
    item_key: str
    # Key under which a page of records is wrapped, e.g. {"Clients": {"Client": [...]}}
    collection_key: str
    default_sort_column: str
    filter_names: tuple[str, ...]
    parent_id_field: str | None = None
    aliases: tuple[str, ...] = field(default_factory=tuple)


_COMMON_FILTERS = (
    "page_index",
    "page_size",
    "is_ascending",
    "sort_column",
    "created_date_from",
    "created_date_to",
)

RESOURCE_REGISTRY: dict[str, ResourceKindInfo] = {
    "clients": ResourceKindInfo(
        name="clients",
        singular="client",
        id_field="client_id",
        search_operation="SearchClient",
        get_operation="GetClient",
        item_key="Client",
        collection_key="Clients",
        default_sort_column="CreatedDate",
        filter_names=_COMMON_FILTERS,
        aliases=("client", "CLIENT", "CLIENTS"),
    ),
    "cases": ResourceKindInfo(
        name="cases",
        singular="case",
        id_field="case_id",
        search_operation="SearchCase",
        get_operation="GetCase",
        item_key="Case",
        collection_key="Cases",
        default_sort_column="CreatedDate",
        filter_names=_COMMON_FILTERS + ("end_date_from", "end_date_to"),
        aliases=("case", "CASE", "CASES"),
    ),
    "sessions": ResourceKindInfo(
        name="sessions",
        singular="session",
        id_field="session_id",
        search_operation="SearchSession",
        get_operation="GetSession",
        item_key="Session",
        collection_key="Sessions",
        default_sort_column="SessionId",
        filter_names=_COMMON_FILTERS + ("case_id", "client_id"),
        parent_id_field="case_id",
        aliases=("session", "SESSION", "SESSIONS"),
    ),
}

# Kinds that have a shallow placeholder and an enriched counterpart
ENRICHABLE_KINDS = ("cases", "sessions")

ALL_RESOURCE_KINDS = list(RESOURCE_REGISTRY)

# DEX criteria names for the snake_case filter keys used internally
DEX_FILTER_NAMES = {
    "page_index": "PageIndex",
    "page_size": "PageSize",
    "is_ascending": "IsAscending",
    "sort_column": "SortColumn",
    "created_date_from": "CreatedDateFrom",
    "created_date_to": "CreatedDateTo",
    "end_date_from": "EndDateFrom",
    "end_date_to": "EndDateTo",
    "case_id": "CaseId",
    "client_id": "ClientId",
}


def get_info(resource_kind: str) -> ResourceKindInfo:
    """Resolve a kind name or alias to its registry entry.

    Raises:
        ResourceKindError: If the name matches no registered kind
    """
    if resource_kind in RESOURCE_REGISTRY:
        return RESOURCE_REGISTRY[resource_kind]

    for info in RESOURCE_REGISTRY.values():
        if resource_kind in info.aliases or resource_kind.lower() in (info.name, info.singular):
            return info

    raise ResourceKindError(
        f"Unknown resource kind: {resource_kind!r}. "
        f"Expected one of: {', '.join(ALL_RESOURCE_KINDS)}"
    )


def resolve_kinds(resource_kinds: list[str]) -> list[str]:
    """Resolve and de-duplicate kind names, keeping the caller's order."""
    resolved: list[str] = []
    for kind in resource_kinds:
        name = get_info(kind).name
        if name not in resolved:
            resolved.append(name)
    return resolved


def get_enrichable_info(resource_kind: str) -> ResourceKindInfo:
    """Resolve a kind that supports shallow/enriched records."""
    info = get_info(resource_kind)
    if info.name not in ENRICHABLE_KINDS:
        raise ResourceKindError(
            f"Resource kind {info.name!r} cannot be enriched. "
            f"Expected one of: {', '.join(ENRICHABLE_KINDS)}"
        )
    return info


def is_valid_kind(resource_kind: str) -> bool:
    """Check whether a kind name or alias resolves."""
    try:
        get_info(resource_kind)
    except ResourceKindError:
        return False
    return True
