"""
Audit Classifier

Maps the shape of a request/response pair onto a compliance event draft.
classify() is pure and total: identical inputs give identical drafts and no
input raises.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from phi_guard.models.audit import (
    AuditEntryDraft,
    EventType,
    Outcome,
    PHI_RESOURCE_TYPES,
    ResourceType,
    Severity,
    raise_severity,
)


_RESOURCE_FAMILIES: Dict[str, ResourceType] = {
    "patients": ResourceType.PATIENT,
    "patient": ResourceType.PATIENT,
    "documents": ResourceType.DOCUMENT,
    "document": ResourceType.DOCUMENT,
    "reports": ResourceType.REPORT,
    "report": ResourceType.REPORT,
    "users": ResourceType.ACTOR,
    "actors": ResourceType.ACTOR,
    "auth": ResourceType.AUTH,
}

_DEFAULT_SEVERITY: Dict[ResourceType, Severity] = {
    ResourceType.PATIENT: Severity.HIGH,
    ResourceType.DOCUMENT: Severity.HIGH,
    ResourceType.ACTOR: Severity.MEDIUM,
    ResourceType.AUTH: Severity.MEDIUM,
}

_PURPOSES: Dict[ResourceType, str] = {
    ResourceType.PATIENT: "patient_care",
    ResourceType.DOCUMENT: "medical_records",
    ResourceType.REPORT: "healthcare_operations",
    ResourceType.AUTH: "authentication",
    ResourceType.ACTOR: "account_management",
}

# Label -> normalised key names (lowercase, no separators). Order is the
# order labels appear in phi_fields.
PHI_FIELD_KEYS: Tuple[Tuple[str, frozenset], ...] = (
    ("name", frozenset({"name", "firstname", "lastname", "fullname", "patientname"})),
    ("date_of_birth", frozenset({"dateofbirth", "dob", "birthdate"})),
    ("identifier_number", frozenset({
        "ssn", "mrn", "identifier", "identifiernumber",
        "medicalrecordnumber", "insuranceid",
    })),
    ("phone", frozenset({"phone", "phonenumber", "mobile"})),
    ("email", frozenset({"email", "emailaddress"})),
    ("address", frozenset({"address", "streetaddress", "homeaddress"})),
    ("medical_history", frozenset({"medicalhistory", "history"})),
)

SECRET_KEYS = frozenset({
    "password", "currentpassword", "newpassword", "passwordhash",
    "ssn", "creditcard", "cvv", "refreshtoken", "accesstoken", "token",
})

REDACTED = "[REDACTED]"

_UUID_SEGMENT = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_CREATE_METHODS = {"POST"}
_UPDATE_METHODS = {"PUT", "PATCH"}
_DELETE_METHODS = {"DELETE"}


def classify(
    method: Any,
    path: Any,
    status_code: Any,
    body: Any = None,
    query: Any = None,
) -> AuditEntryDraft:
    """
    Classify a request/response pair into an audit entry draft

    Args:
        method: HTTP method
        path: Request path (a query string, if present, is ignored)
        status_code: Response status code
        body: Parsed request body, if any
        query: Query parameters, if any

    Returns:
        Draft carrying event type, severity, outcome, resource type,
        resource id, PHI flag, PHI field labels and purpose tag
    """
    verb = method.upper() if isinstance(method, str) else ""
    clean_path = _clean_path(path)
    segments = _segments(clean_path)
    status = _coerce_status(status_code)

    resource_type = resource_type_for(segments)
    event_type = _event_type(verb, segments)

    severity = _DEFAULT_SEVERITY.get(resource_type, Severity.LOW)
    if status in (401, 403):
        severity = raise_severity(severity, Severity.HIGH)

    outcome = Outcome.FAILURE if status >= 400 else Outcome.SUCCESS

    phi_accessed = resource_type in PHI_RESOURCE_TYPES
    phi_fields: Optional[List[str]] = None
    if phi_accessed:
        phi_fields = extract_phi_fields(body, query) or [f"{resource_type.value}_record"]

    return AuditEntryDraft(
        action=f"{verb or 'UNKNOWN'} {clean_path}",
        resource=clean_path,
        resource_id=_resource_id(segments),
        resource_type=resource_type,
        event_type=event_type,
        severity=severity,
        outcome=outcome,
        phi_accessed=phi_accessed,
        phi_fields=phi_fields,
        purpose=_PURPOSES.get(resource_type, "general_operations"),
        details={"method": verb, "status_code": status},
    )


def resource_type_for(segments: Iterable[str]) -> ResourceType:
    for segment in segments:
        family = _RESOURCE_FAMILIES.get(segment.lower())
        if family is not None:
            return family
    return ResourceType.SYSTEM


def extract_phi_fields(body: Any = None, query: Any = None) -> List[str]:
    """
    Labels of known sensitive fields present in a request body or query

    Only top-level keys (and the top-level keys of a list of objects) are
    inspected, so nested or aliased fields are not detected. Treat the
    result as a lower bound on what was touched.
    """
    keys = set()
    for source in (body, query):
        keys.update(_normalised_keys(source))

    return [label for label, names in PHI_FIELD_KEYS if keys & names]


def redact_secrets(values: Any) -> Any:
    """Copy of a request body with credential and secret fields masked"""
    if isinstance(values, Mapping):
        return {
            str(key): REDACTED if _normalise(key) in SECRET_KEYS else redact_secrets(value)
            for key, value in values.items()
        }
    if isinstance(values, (list, tuple)):
        return [redact_secrets(item) for item in values]
    return values


def extract_error_message(payload: Any) -> str:
    """Best-effort error message from a failed response body"""
    data = payload
    if isinstance(payload, (bytes, bytearray)):
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return "Request failed"
    if isinstance(data, Mapping):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return "Request failed"


def _event_type(verb: str, segments: List[str]) -> EventType:
    lowered = [s.lower() for s in segments]
    for i, segment in enumerate(lowered[:-1]):
        if segment == "auth":
            marker = lowered[i + 1]
            if marker in ("login", "refresh"):
                return EventType.LOGIN
            if marker == "logout":
                return EventType.LOGOUT

    if verb in _CREATE_METHODS:
        if any(s in ("upload", "uploads") for s in lowered):
            return EventType.FILE_UPLOAD
        if "export" in lowered:
            return EventType.DATA_EXPORT
        if any(s.startswith("report") for s in lowered):
            return EventType.REPORT_GENERATION
        return EventType.CREATE
    if verb in _UPDATE_METHODS:
        return EventType.UPDATE
    if verb in _DELETE_METHODS:
        return EventType.DELETE
    return EventType.READ


def _resource_id(segments: List[str]) -> Optional[str]:
    for segment in segments:
        if _UUID_SEGMENT.match(segment):
            return segment.lower()
    return None


def _clean_path(path: Any) -> str:
    if isinstance(path, bytes):
        path = path.decode("utf-8", errors="replace")
    if not isinstance(path, str):
        path = "" if path is None else str(path)
    path = path.split("?", 1)[0]
    if not path.startswith("/"):
        path = "/" + path
    return path


def _segments(path: str) -> List[str]:
    return [segment for segment in path.split("/") if segment]


def _coerce_status(status_code: Any) -> int:
    if isinstance(status_code, bool):
        return 0
    try:
        return int(status_code)
    except (TypeError, ValueError, OverflowError):
        return 0


def _normalise(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def _normalised_keys(source: Any) -> set:
    if isinstance(source, Mapping):
        return {_normalise(key) for key in source.keys()}
    if isinstance(source, (list, tuple)):
        keys = set()
        for item in source:
            if isinstance(item, Mapping):
                keys.update(_normalise(key) for key in item.keys())
        return keys
    return set()
