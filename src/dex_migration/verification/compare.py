"""Field-level comparison of local records against fresh source data."""

import json
from collections.abc import Mapping
from typing import Any

from dex_migration.normalize import field_aliases

_ADDRESS = "ResidentialAddress"

# Local column -> lookup paths in the source payload, per record set
FIELD_PAIRS: dict[str, dict[str, tuple[str, ...]]] = {
    "clients": {
        "first_name": field_aliases(
            "first_name", "GivenName", "given_name", "Client.GivenName", "Client.FirstName"
        ),
        "last_name": field_aliases(
            "last_name", "FamilyName", "family_name", "Client.FamilyName", "Client.LastName"
        ),
        "date_of_birth": field_aliases(
            "date_of_birth", "BirthDate", "birth_date", "Client.BirthDate"
        ),
        "gender": field_aliases("gender", "GenderCode", "gender_code", "Client.GenderCode"),
        "suburb": field_aliases("suburb", f"{_ADDRESS}.Suburb", f"Client.{_ADDRESS}.Suburb"),
        "state": field_aliases("state", f"{_ADDRESS}.State", f"Client.{_ADDRESS}.State"),
        "postal_code": field_aliases(
            "postal_code", "Postcode", f"{_ADDRESS}.Postcode", f"Client.{_ADDRESS}.Postcode"
        ),
    },
    "cases": {
        "client_id": field_aliases(
            "client_id",
            "client_ids.0",
            "Clients.CaseClient.0.ClientId",
            "Clients.CaseClient.ClientId",
            "CaseDetail.ClientId",
        ),
        "outlet_activity_id": field_aliases(
            "outlet_activity_id", "CaseDetail.OutletActivityId", "Case.OutletActivityId"
        ),
        "referral_source_code": field_aliases(
            "referral_source_code", "CaseDetail.ReferralSourceCode", "Case.ReferralSourceCode"
        ),
        "end_date": field_aliases("end_date", "CaseDetail.EndDate", "Case.EndDate"),
    },
    "sessions": {
        "case_id": field_aliases("case_id", "Session.CaseId"),
        "service_type_id": field_aliases(
            "service_type_id", "SessionDetails.ServiceTypeId", "Session.ServiceTypeId"
        ),
        "session_date": field_aliases(
            "session_date", "SessionDetails.SessionDate", "Session.SessionDate"
        ),
        "duration_minutes": field_aliases(
            "duration_minutes", "Time", "SessionDetails.Time", "Session.Time"
        ),
    },
    "enriched_cases": {
        "outlet_name": field_aliases("outlet_name", "CaseDetail.OutletName", "Case.OutletName"),
        "outlet_activity_id": field_aliases(
            "outlet_activity_id", "CaseDetail.OutletActivityId", "Case.OutletActivityId"
        ),
        "client_attendance_profile_code": field_aliases(
            "client_attendance_profile_code",
            "CaseDetail.ClientAttendanceProfileCode",
            "Case.ClientAttendanceProfileCode",
        ),
        "end_date": field_aliases("end_date", "CaseDetail.EndDate", "Case.EndDate"),
    },
    "enriched_sessions": {
        "session_date": field_aliases(
            "session_date", "SessionDetails.SessionDate", "Session.SessionDate"
        ),
        "service_type_id": field_aliases(
            "service_type_id", "SessionDetails.ServiceTypeId", "Session.ServiceTypeId"
        ),
        "fees_charged": field_aliases(
            "fees_charged", "SessionDetails.FeesCharged", "Session.FeesCharged"
        ),
        "service_setting_code": field_aliases(
            "service_setting_code",
            "SessionDetails.ServiceSettingCode",
            "Session.ServiceSettingCode",
        ),
    },
}


def normalize_value(value: Any) -> Any:
    """
    Canonical form used for comparison.

    None stays None, booleans are kept, strings are trimmed and lower-cased,
    numbers become strings and containers become sorted JSON.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _lookup(data: Mapping[str, Any], path: str) -> Any:
    # Supports a numeric segment for the first element of a list
    current: Any = data
    for key in path.split("."):
        if isinstance(current, list):
            if not key.isdigit() or int(key) >= len(current):
                return None
            current = current[int(key)]
        elif isinstance(current, Mapping) and key in current:
            current = current[key]
        else:
            return None
    return current


def source_value(data: Mapping[str, Any], paths: tuple[str, ...]) -> Any:
    """First non-None value among ``paths`` in a source payload."""
    for path in paths:
        value = _lookup(data, path)
        if value is not None:
            return value
    return None


def compare_record(record: Any, source_data: Mapping[str, Any], record_set: str) -> list[dict]:
    """
    Compare a local record's fields with the source payload.

    Returns:
        One ``{field, local_value, source_value}`` entry per mismatching field
    """
    discrepancies = []
    for field_name, paths in FIELD_PAIRS[record_set].items():
        local = getattr(record, field_name, None)
        remote = source_value(source_data, paths)
        if normalize_value(local) != normalize_value(remote):
            discrepancies.append(
                {"field": field_name, "local_value": local, "source_value": remote}
            )
    return discrepancies
