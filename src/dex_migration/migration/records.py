"""
Persistence for migrated, shallow and enriched records.

Source items are projected onto the canonical columns declared here, then
upserted by their external id. Lookups try snake_case names first, then
PascalCase, then the nested detail objects DEX wraps some fields in.
"""

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import delete

from dex_migration.client.exceptions import (
    DexMigrationError,
    MissingIdentifierError,
    StateError,
)
from dex_migration.config import StateConfig
from dex_migration.migration.database import get_session, init_database, resolve_database_url
from dex_migration.migration.models import (
    ENRICHED_RECORD_MODELS,
    MIGRATED_RECORD_MODELS,
    VERIFICATION_FAILED,
    VERIFICATION_PENDING,
    VERIFICATION_VERIFIED,
    EnrichedCase,
    EnrichedSession,
    MigratedCase,
    ShallowCase,
    ShallowSession,
    utcnow,
)
from dex_migration.normalize import (
    as_bool,
    as_float,
    as_int,
    as_text,
    coerce_id_list,
    extract_client_ids,
    extract_session_ids,
    field_aliases,
    first_present,
    pascal_case,
    project_fields,
)
from dex_migration.resources import get_enrichable_info, get_info
from dex_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _nested(name: str, *prefixes: str) -> tuple[str, ...]:
    pascal = pascal_case(name)
    return tuple(f"{prefix}.{pascal}" for prefix in prefixes)


_ADDRESS = ("ResidentialAddress", "Client.ResidentialAddress")
_CLIENT = ("Client",)
_CASE = ("CaseDetail", "Case", "Case.CaseDetail")
_SESSION = ("SessionDetails", "Session", "Session.SessionDetails")

ID_PATHS: dict[str, tuple[str, ...]] = {
    "clients": field_aliases("client_id", "Client.ClientId", "id"),
    "cases": field_aliases("case_id", "Case.CaseId", "id"),
    "sessions": field_aliases("session_id", "Session.SessionId", "id"),
}

PARENT_CASE_PATHS = field_aliases("case_id", "Session.CaseId", "Case.CaseId")

CLIENT_FIELDS: dict[str, tuple[str, ...]] = {
    "slk": field_aliases("slk", "SLK", *_nested("slk", *_CLIENT)),
    "first_name": field_aliases("first_name", "GivenName", "given_name", "Client.GivenName"),
    "last_name": field_aliases("last_name", "FamilyName", "family_name", "Client.FamilyName"),
    "date_of_birth": field_aliases(
        "date_of_birth", "BirthDate", "birth_date", "Client.BirthDate"
    ),
    "gender": field_aliases("gender", "GenderCode", "gender_code", "Client.GenderCode"),
    "suburb": field_aliases("suburb", *_nested("suburb", *_ADDRESS)),
    "state": field_aliases("state", *_nested("state", *_ADDRESS)),
    "postal_code": field_aliases("postal_code", "Postcode", *_nested("postcode", *_ADDRESS)),
    "country_of_birth_code": field_aliases(
        "country_of_birth_code", *_nested("country_of_birth_code", *_CLIENT)
    ),
    "language_spoken_at_home_code": field_aliases(
        "language_spoken_at_home_code", *_nested("language_spoken_at_home_code", *_CLIENT)
    ),
    "aboriginal_or_torres_strait_islander_origin_code": field_aliases(
        "aboriginal_or_torres_strait_islander_origin_code",
        *_nested("aboriginal_or_torres_strait_islander_origin_code", *_CLIENT),
    ),
    "consent_to_provide_details": field_aliases("consent_to_provide_details"),
    "consented_for_future_contacts": field_aliases("consented_for_future_contacts"),
    "is_using_pseudonym": field_aliases("is_using_pseudonym"),
    "has_disabilities": field_aliases("has_disabilities"),
}

CASE_FIELDS: dict[str, tuple[str, ...]] = {
    "outlet_name": field_aliases("outlet_name", *_nested("outlet_name", *_CASE)),
    "outlet_activity_id": field_aliases(
        "outlet_activity_id", *_nested("outlet_activity_id", *_CASE)
    ),
    "referral_source_code": field_aliases(
        "referral_source_code", *_nested("referral_source_code", *_CASE)
    ),
    "client_attendance_profile_code": field_aliases(
        "client_attendance_profile_code", *_nested("client_attendance_profile_code", *_CASE)
    ),
    "created_date_time": field_aliases(
        "created_date_time", "CreatedDate", *_nested("created_date_time", *_CASE)
    ),
    "end_date": field_aliases("end_date", *_nested("end_date", *_CASE)),
    "exit_reason_code": field_aliases("exit_reason_code", *_nested("exit_reason_code", *_CASE)),
    "program_activity_name": field_aliases(
        "program_activity_name", *_nested("program_activity_name", *_CASE)
    ),
    "total_number_of_unidentified_clients": field_aliases(
        "total_number_of_unidentified_clients",
        *_nested("total_number_of_unidentified_clients", *_CASE),
    ),
}

SESSION_FIELDS: dict[str, tuple[str, ...]] = {
    "session_date": field_aliases("session_date", *_nested("session_date", *_SESSION)),
    "service_type_id": field_aliases("service_type_id", *_nested("service_type_id", *_SESSION)),
    "duration_minutes": field_aliases(
        "duration_minutes", "Time", "time", *_nested("time", *_SESSION)
    ),
    "total_number_of_unidentified_clients": field_aliases(
        "total_number_of_unidentified_clients",
        *_nested("total_number_of_unidentified_clients", *_SESSION),
    ),
    "fees_charged": field_aliases("fees_charged", *_nested("fees_charged", *_SESSION)),
    "money_business_community_education_workshop_code": field_aliases(
        "money_business_community_education_workshop_code",
        *_nested("money_business_community_education_workshop_code", *_SESSION),
    ),
    "interpreter_present": field_aliases(
        "interpreter_present", *_nested("interpreter_present", *_SESSION)
    ),
    "service_setting_code": field_aliases(
        "service_setting_code", *_nested("service_setting_code", *_SESSION)
    ),
}


def extract_external_id(resource_kind: str, data: Mapping[str, Any]) -> str:
    """
    Return the natural id of a source item as a string.

    Raises:
        MissingIdentifierError: If the item carries no usable id
    """
    info = get_info(resource_kind)
    value = as_text(first_present(data, ID_PATHS[info.name]))
    if not value:
        raise MissingIdentifierError(f"{info.singular} item has no {info.id_field}")
    return value


def extract_parent_case_id(data: Mapping[str, Any]) -> str | None:
    return as_text(first_present(data, PARENT_CASE_PATHS))


def project_client(data: Mapping[str, Any]) -> dict[str, Any]:
    """Canonical client columns from a source payload."""
    fields = project_fields(data, CLIENT_FIELDS)
    for flag in (
        "consent_to_provide_details",
        "consented_for_future_contacts",
        "is_using_pseudonym",
        "has_disabilities",
    ):
        fields[flag] = as_bool(fields[flag])
    for name, value in fields.items():
        if not isinstance(value, bool):
            fields[name] = as_text(value)
    return fields


def project_case(data: Mapping[str, Any]) -> dict[str, Any]:
    """Canonical case columns from a source payload."""
    fields = project_fields(data, CASE_FIELDS)
    client_ids = extract_client_ids(data)
    if not client_ids:
        client_ids = coerce_id_list(first_present(data, field_aliases("client_id")), "ClientId")
    return {
        "client_id": client_ids[0] if client_ids else None,
        "client_ids": client_ids,
        "outlet_name": as_text(fields["outlet_name"]),
        "outlet_activity_id": as_int(fields["outlet_activity_id"]),
        "referral_source_code": as_text(fields["referral_source_code"]),
        "client_attendance_profile_code": as_text(fields["client_attendance_profile_code"]),
        "created_date_time": as_text(fields["created_date_time"]),
        "end_date": as_text(fields["end_date"]),
        "exit_reason_code": as_text(fields["exit_reason_code"]),
        "program_activity_name": as_text(fields["program_activity_name"]),
        "total_number_of_unidentified_clients": as_int(
            fields["total_number_of_unidentified_clients"]
        ),
        "session_ids": extract_session_ids(data),
    }


def project_session(data: Mapping[str, Any]) -> dict[str, Any]:
    """Canonical session columns from a source payload."""
    fields = project_fields(data, SESSION_FIELDS)
    return {
        "case_id": extract_parent_case_id(data),
        "session_date": as_text(fields["session_date"]),
        "service_type_id": as_int(fields["service_type_id"]),
        "duration_minutes": as_int(fields["duration_minutes"]),
        "total_number_of_unidentified_clients": as_int(
            fields["total_number_of_unidentified_clients"]
        ),
        "fees_charged": as_float(fields["fees_charged"]),
        "money_business_community_education_workshop_code": as_text(
            fields["money_business_community_education_workshop_code"]
        ),
        "interpreter_present": as_bool(fields["interpreter_present"]),
        "service_setting_code": as_text(fields["service_setting_code"]),
    }


def project_enriched_case(data: Mapping[str, Any]) -> dict[str, Any]:
    """Columns of an enriched case. Identifiers the source omits stay None."""
    case = project_case(data)
    unidentified = case["total_number_of_unidentified_clients"]
    return {
        "outlet_name": case["outlet_name"],
        "outlet_activity_id": case["outlet_activity_id"],
        "client_ids": case["client_ids"],
        "client_count": unidentified if unidentified else len(case["client_ids"]),
        "client_attendance_profile_code": case["client_attendance_profile_code"],
        "created_date_time": case["created_date_time"],
        "end_date": case["end_date"],
        "session_ids": case["session_ids"],
    }


def project_enriched_session(data: Mapping[str, Any]) -> dict[str, Any]:
    """Columns of an enriched session. A missing unidentified count defaults to zero."""
    session = project_session(data)
    return {
        "session_date": session["session_date"],
        "service_type_id": session["service_type_id"],
        "total_number_of_unidentified_clients": session["total_number_of_unidentified_clients"]
        or 0,
        "fees_charged": session["fees_charged"],
        "money_business_community_education_workshop_code": session[
            "money_business_community_education_workshop_code"
        ],
        "interpreter_present": session["interpreter_present"],
        "service_setting_code": session["service_setting_code"],
    }


def _migrated_session_columns(data: Mapping[str, Any]) -> dict[str, Any]:
    columns = project_session(data)
    columns.pop("money_business_community_education_workshop_code")
    return columns


_MIGRATED_COLUMNS = {
    "clients": project_client,
    "cases": project_case,
    "sessions": _migrated_session_columns,
}


class RecordStore:
    """
    Thread-safe store for record tables.

    Shares the process-wide engine with MigrationState; both can be used on
    the same database at once.
    """

    def __init__(self, config: StateConfig):
        self.config = config
        self.database_url = resolve_database_url(config.db_path)
        self._lock = threading.RLock()
        init_database(
            self.database_url,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
            pool_recycle=config.db_pool_recycle,
        )

    # Migrated records

    def upsert_migrated(
        self, resource_kind: str, data: Mapping[str, Any], batch_id: int | None = None
    ) -> str:
        """
        Insert or update one migrated record by its external id.

        Case records also get a shallow placeholder for later enrichment.

        Returns:
            The record's external id

        Raises:
            MissingIdentifierError: If the item has no external id
        """
        info = get_info(resource_kind)
        external_id = extract_external_id(info.name, data)
        model = MIGRATED_RECORD_MODELS[info.name]
        columns = _MIGRATED_COLUMNS[info.name](data)

        with self._lock:
            try:
                with get_session(self.database_url) as session:
                    record = (
                        session.query(model)
                        .filter(getattr(model, info.id_field) == external_id)
                        .first()
                    )
                    if record is None:
                        record = model(**{info.id_field: external_id})
                        session.add(record)

                    for name, value in columns.items():
                        setattr(record, name, value)
                    record.api_response = dict(data)
                    record.batch_id = batch_id
                    record.verification_status = VERIFICATION_PENDING
                    record.verification_error = None
                    record.verified_at = None

                    if info.name == "cases":
                        self._ensure_shallow_case(session, external_id, batch_id)

                    return external_id

            except DexMigrationError:
                raise
            except Exception as e:
                logger.error(
                    "record_upsert_failed",
                    resource_kind=info.name,
                    external_id=external_id,
                    error=str(e),
                )
                raise StateError(f"Failed to store {info.singular} {external_id}: {e}") from e

    def get_migrated(self, resource_kind: str, external_id: str):
        info = get_info(resource_kind)
        model = MIGRATED_RECORD_MODELS[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                return (
                    session.query(model)
                    .filter(getattr(model, info.id_field) == external_id)
                    .first()
                )

    def records_for_batches(self, resource_kind: str, batch_ids: Iterable[int]) -> list:
        """Migrated records produced by the given batches."""
        batch_ids = list(batch_ids)
        if not batch_ids:
            return []
        info = get_info(resource_kind)
        model = MIGRATED_RECORD_MODELS[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                return (
                    session.query(model)
                    .filter(model.batch_id.in_(batch_ids))
                    .order_by(model.id)
                    .all()
                )

    def count_migrated(self, resource_kind: str) -> int:
        info = get_info(resource_kind)
        model = MIGRATED_RECORD_MODELS[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                return session.query(model).count()

    def migrated_cases(self) -> list[MigratedCase]:
        with self._lock:
            with get_session(self.database_url) as session:
                return session.query(MigratedCase).order_by(MigratedCase.id).all()

    def update_verification(
        self,
        record_table: str,
        resource_kind: str,
        external_id: str,
        verified: bool,
        error: str | None = None,
    ) -> None:
        """
        Write a verification result onto a migrated or enriched record.

        Args:
            record_table: ``migrated`` or ``enriched``
            resource_kind: Kind of the record
            external_id: Natural id of the record
            verified: Whether the record matched the source
            error: Failure description when not verified
        """
        info = get_info(resource_kind)
        models = MIGRATED_RECORD_MODELS if record_table == "migrated" else ENRICHED_RECORD_MODELS
        model = models[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                record = (
                    session.query(model)
                    .filter(getattr(model, info.id_field) == external_id)
                    .first()
                )
                if record is None:
                    logger.warning(
                        "verification_target_missing",
                        record_table=record_table,
                        resource_kind=info.name,
                        external_id=external_id,
                    )
                    return
                record.verification_status = (
                    VERIFICATION_VERIFIED if verified else VERIFICATION_FAILED
                )
                record.verification_error = None if verified else error
                record.verified_at = utcnow()

    # Shallow records

    def _ensure_shallow_case(self, session, case_id: str, batch_id: int | None) -> ShallowCase:
        shallow = session.query(ShallowCase).filter(ShallowCase.case_id == case_id).first()
        if shallow is None:
            shallow = ShallowCase(case_id=case_id, batch_id=batch_id)
            session.add(shallow)
        return shallow

    def upsert_shallow_session(self, case_id: str, session_id: str) -> bool:
        """Create a shallow session if missing. Returns True if one was created."""
        with self._lock:
            with get_session(self.database_url) as session:
                exists = (
                    session.query(ShallowSession.id)
                    .filter(
                        ShallowSession.case_id == case_id,
                        ShallowSession.session_id == session_id,
                    )
                    .first()
                )
                if exists:
                    return False
                session.add(ShallowSession(case_id=case_id, session_id=session_id))
                return True

    def shallow_records(self, resource_kind: str) -> list:
        """All shallow records of an enrichable kind, oldest first."""
        info = get_enrichable_info(resource_kind)
        model = ShallowCase if info.name == "cases" else ShallowSession
        with self._lock:
            with get_session(self.database_url) as session:
                return session.query(model).order_by(model.id).all()

    def count_shallow(self, resource_kind: str) -> int:
        info = get_enrichable_info(resource_kind)
        model = ShallowCase if info.name == "cases" else ShallowSession
        with self._lock:
            with get_session(self.database_url) as session:
                return session.query(model).count()

    # Enriched records

    def is_enriched(self, resource_kind: str, external_id: str) -> bool:
        """An enriched row's existence is the only "already enriched" signal."""
        info = get_enrichable_info(resource_kind)
        model = ENRICHED_RECORD_MODELS[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                return (
                    session.query(model.id)
                    .filter(getattr(model, info.id_field) == external_id)
                    .first()
                    is not None
                )

    def upsert_enriched_case(self, shallow_id: int, case_id: str, data: Mapping[str, Any]) -> None:
        columns = project_enriched_case(data)
        with self._lock:
            with get_session(self.database_url) as session:
                record = session.query(EnrichedCase).filter(EnrichedCase.case_id == case_id).first()
                if record is None:
                    record = EnrichedCase(case_id=case_id)
                    session.add(record)
                record.shallow_case_id = shallow_id
                for name, value in columns.items():
                    setattr(record, name, value)
                record.api_response = dict(data)
                record.enriched_at = utcnow()
                record.verification_status = VERIFICATION_PENDING
                record.verification_error = None

    def upsert_enriched_session(
        self, shallow_id: int, case_id: str, session_id: str, data: Mapping[str, Any]
    ) -> None:
        columns = project_enriched_session(data)
        with self._lock:
            with get_session(self.database_url) as session:
                record = (
                    session.query(EnrichedSession)
                    .filter(EnrichedSession.session_id == session_id)
                    .first()
                )
                if record is None:
                    record = EnrichedSession(session_id=session_id)
                    session.add(record)
                record.case_id = case_id
                record.shallow_session_id = shallow_id
                for name, value in columns.items():
                    setattr(record, name, value)
                record.api_response = dict(data)
                record.enriched_at = utcnow()
                record.verification_status = VERIFICATION_PENDING
                record.verification_error = None

    def enriched_records(self, resource_kind: str) -> list:
        info = get_enrichable_info(resource_kind)
        model = ENRICHED_RECORD_MODELS[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                return session.query(model).order_by(model.id).all()

    def count_enriched(self, resource_kind: str) -> int:
        info = get_enrichable_info(resource_kind)
        model = ENRICHED_RECORD_MODELS[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                return session.query(model).count()

    def enriched_ids(self, resource_kind: str) -> set[str]:
        info = get_enrichable_info(resource_kind)
        model = ENRICHED_RECORD_MODELS[info.name]
        column = getattr(model, info.id_field)
        with self._lock:
            with get_session(self.database_url) as session:
                return {value for (value,) in session.query(column).all()}

    def delete_enriched(self, resource_kind: str) -> int:
        """Delete every enriched record of a kind. Returns the number deleted."""
        info = get_enrichable_info(resource_kind)
        model = ENRICHED_RECORD_MODELS[info.name]
        with self._lock:
            with get_session(self.database_url) as session:
                result = session.execute(delete(model))
                logger.warning(
                    "enriched_records_deleted", resource_kind=info.name, count=result.rowcount
                )
                return result.rowcount
