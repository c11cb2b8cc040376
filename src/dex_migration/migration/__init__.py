"""
Migration module for DEX Bridge.

This module provides state management, batch planning and dispatch, and the
coordinator that runs migrations from the DEX API into the local store.
"""

# Coordination
from dex_migration.migration.coordinator import MigrationCoordinator

# Database utilities
from dex_migration.migration.database import (
    create_database_engine,
    get_engine,
    get_session,
    get_session_factory,
    init_database,
    resolve_database_url,
)

# Database models
from dex_migration.migration.models import (
    AdvisoryLock,
    Base,
    EnrichedCase,
    EnrichedSession,
    EnrichmentRun,
    MigratedCase,
    MigratedClient,
    MigratedSession,
    Migration,
    MigrationBatch,
    ShallowCase,
    ShallowSession,
)
from dex_migration.migration.planner import BatchDescriptor, BatchPlanner, plan_batches
from dex_migration.migration.records import RecordStore

# State management
from dex_migration.migration.state import MigrationState

__all__ = [
    # Models
    "Base",
    "Migration",
    "MigrationBatch",
    "MigratedClient",
    "MigratedCase",
    "MigratedSession",
    "ShallowCase",
    "ShallowSession",
    "EnrichedCase",
    "EnrichedSession",
    "EnrichmentRun",
    "AdvisoryLock",
    # Database utilities
    "init_database",
    "get_engine",
    "get_session",
    "get_session_factory",
    "create_database_engine",
    "resolve_database_url",
    # State and records
    "MigrationState",
    "RecordStore",
    # Planning and coordination
    "BatchDescriptor",
    "BatchPlanner",
    "plan_batches",
    "MigrationCoordinator",
]
