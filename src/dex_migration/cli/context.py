"""
CLI context for DEX Bridge.

This module provides the context object that is passed to all CLI commands,
holding configuration and lazily created clients and stores.
"""

from dataclasses import dataclass, field
from pathlib import Path

from dex_migration.client.exceptions import ConfigurationError
from dex_migration.client.source import DexSourceClient
from dex_migration.config import DexBridgeConfig, load_config_from_yaml
from dex_migration.enrichment.runner import EnrichmentRunner
from dex_migration.migration.coordinator import MigrationCoordinator
from dex_migration.migration.records import RecordStore
from dex_migration.migration.state import MigrationState
from dex_migration.utils.logging import get_logger
from dex_migration.verification.sampler import VerificationSampler

logger = get_logger(__name__)


@dataclass
class BridgeContext:
    """
    Context object for CLI commands.

    Everything except the options given on the command line is created on
    first access, so commands only pay for what they use.

    Attributes:
        config_path: Path to configuration file
        log_level: Console logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    _config: DexBridgeConfig | None = field(default=None, init=False, repr=False)
    _source_client: DexSourceClient | None = field(default=None, init=False, repr=False)
    _state: MigrationState | None = field(default=None, init=False, repr=False)
    _records: RecordStore | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> DexBridgeConfig:
        """Get or load configuration."""
        if self._config is None:
            if self.config_path is None:
                raise ConfigurationError(
                    "Configuration file path not provided. "
                    "Use --config option or set DEX_BRIDGE_CONFIG environment variable."
                )

            logger.debug("loading_config", config_path=str(self.config_path))
            self._config = load_config_from_yaml(self.config_path)

        return self._config

    @property
    def source_client(self) -> DexSourceClient:
        """Get or create the DEX client."""
        if self._source_client is None:
            logger.debug("creating_source_client", url=self.config.source.url)
            self._source_client = DexSourceClient(
                config=self.config.source,
                performance=self.config.performance,
                logging_config=self.config.logging,
            )

        return self._source_client

    @property
    def state(self) -> MigrationState:
        if self._state is None:
            logger.debug("initializing_state", db_path=self.config.state.db_path)
            self._state = MigrationState(config=self.config.state)
        return self._state

    @property
    def records(self) -> RecordStore:
        if self._records is None:
            self._records = RecordStore(config=self.config.state)
        return self._records

    @property
    def coordinator(self) -> MigrationCoordinator:
        return MigrationCoordinator(
            self.config, self.source_client, state=self.state, records=self.records
        )

    @property
    def runner(self) -> EnrichmentRunner:
        return EnrichmentRunner(self.config, self.source_client, self.records)

    @property
    def sampler(self) -> VerificationSampler:
        return VerificationSampler(self.config, self.source_client, self.state, self.records)

    async def close(self) -> None:
        """Close the DEX client if one was created."""
        if self._source_client is not None:
            await self._source_client.close()
            self._source_client = None
            logger.debug("source_client_closed")
