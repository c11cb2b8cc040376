"""DEX source client.

Operations are posted as JSON to ``{base_url}/{Operation}``: searches carry
their filters in a ``Criteria`` object, gets carry the record id(s) at the
top level. Responses are returned as received; the pipeline normalizes them.
"""

from typing import Any, Protocol

from dex_migration.client.base_client import BaseAPIClient
from dex_migration.client.exceptions import NotFoundError
from dex_migration.config import LoggingConfig, PerformanceConfig, SourceConfig
from dex_migration.normalize import pascal_case, unwrap_record
from dex_migration.resources import DEX_FILTER_NAMES, get_info
from dex_migration.utils.logging import get_logger
from dex_migration.utils.retry import retry_api_call, retry_api_call_short

logger = get_logger(__name__)


class SourceAdapter(Protocol):
    """What the pipeline needs from the source of records."""

    async def search(
        self,
        resource_kind: str,
        filters: dict[str, Any],
        page_index: int,
        page_size: int,
    ) -> Any: ...

    async def fetch_by_id(
        self, resource_kind: str, record_id: str, *parent_ids: str
    ) -> dict[str, Any] | None: ...


def build_criteria(
    resource_kind: str, filters: dict[str, Any], page_index: int, page_size: int
) -> dict[str, Any]:
    """
    Translate snake_case filters into DEX search criteria for a kind.

    Filters the kind does not support are dropped; the kind's default sort
    column is used when none is given.
    """
    info = get_info(resource_kind)
    merged = {**filters, "page_index": page_index, "page_size": page_size}

    criteria: dict[str, Any] = {}
    for name, value in merged.items():
        if value is None:
            continue
        if name not in info.filter_names:
            logger.debug("filter_dropped", resource_kind=info.name, filter=name)
            continue
        criteria[DEX_FILTER_NAMES.get(name, pascal_case(name))] = value

    criteria.setdefault("SortColumn", info.default_sort_column)
    criteria.setdefault("IsAscending", True)
    return criteria


class DexSourceClient(BaseAPIClient):
    """Client for the DSS Data Exchange API."""

    def __init__(
        self,
        config: SourceConfig,
        performance: PerformanceConfig | None = None,
        logging_config: LoggingConfig | None = None,
        **kwargs: Any,
    ):
        """Initialize DEX source client.

        Args:
            config: DEX connection settings
            performance: Rate and connection limits
            logging_config: Payload logging settings
            **kwargs: Passed through to BaseAPIClient (e.g. ``transport``)
        """
        performance = performance or PerformanceConfig()
        logging_config = logging_config or LoggingConfig()
        super().__init__(
            base_url=config.url,
            token=config.token,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=performance.rate_limit,
            max_connections=performance.max_connections,
            log_payloads=logging_config.log_payloads,
            max_payload_size=logging_config.max_payload_size,
            **kwargs,
        )

    @retry_api_call
    async def search(
        self,
        resource_kind: str,
        filters: dict[str, Any],
        page_index: int = 1,
        page_size: int = 100,
    ) -> Any:
        """Run ``Search{Kind}`` for one page.

        Returns:
            The raw response payload
        """
        info = get_info(resource_kind)
        criteria = build_criteria(info.name, filters, page_index, page_size)
        return await self.post(info.search_operation, json_data={"Criteria": criteria})

    @retry_api_call_short
    async def fetch_by_id(
        self, resource_kind: str, record_id: str, *parent_ids: str
    ) -> dict[str, Any] | None:
        """Run ``Get{Kind}`` for one record.

        Sessions are addressed by session id and their parent case id.

        Returns:
            The unwrapped record, or None if DEX does not know it
        """
        info = get_info(resource_kind)
        body: dict[str, Any] = {pascal_case(info.id_field): record_id, "Criteria": {}}
        if info.parent_id_field and parent_ids:
            body[pascal_case(info.parent_id_field)] = parent_ids[0]

        try:
            payload = await self.post(info.get_operation, json_data=body)
        except NotFoundError:
            logger.debug("record_not_found", resource_kind=info.name, record_id=record_id)
            return None
        return unwrap_record(payload, info)
