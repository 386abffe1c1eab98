"""SOQL sanitization utilities.

Every identifier and literal interpolated into a query string passes
through this module. ``validate_soql_query`` is a last line of defence for
fully assembled queries; prefer building queries from sanitized parts.
"""

import re

from crm_migration.client.exceptions import InvalidIdentifierError, QuerySecurityError

# Object names: custom objects end in __c
OBJECT_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(__c)?$")

# One segment of a field path: custom fields end in __c, relationships in __r
FIELD_SEGMENT_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(__c|__r)?$")

ORDER_BY_PART_PATTERN = re.compile(
    r"^([a-zA-Z][a-zA-Z0-9_.]*(?:__c|__r)?)\s*(ASC|DESC)?$", re.IGNORECASE
)

MAX_QUERY_LIMIT = 50000

DANGEROUS_PATTERNS = [
    re.compile(r";\s*DELETE\s+", re.IGNORECASE),
    re.compile(r";\s*UPDATE\s+", re.IGNORECASE),
    re.compile(r";\s*INSERT\s+", re.IGNORECASE),
    re.compile(r";\s*UPSERT\s+", re.IGNORECASE),
    re.compile(r"UNION\s+SELECT", re.IGNORECASE),
    re.compile(r"OR\s+1\s*=\s*1", re.IGNORECASE),
    re.compile(r"OR\s+'[^']*'\s*=\s*'[^']*'", re.IGNORECASE),
    re.compile(r"--\s*$", re.MULTILINE),
    re.compile(r"/\*.*?\*/", re.DOTALL),
]

_SELECT_PREFIX = re.compile(r"^\s*SELECT\s+", re.IGNORECASE)


def escape_soql_string(value: str) -> str:
    """Escape a value for use inside a single-quoted SOQL literal.

    Backslashes are escaped first so later escapes are not doubled.

    Args:
        value: Raw string value

    Returns:
        Escaped value (without surrounding quotes)

    Raises:
        QuerySecurityError: If value is not a string
    """
    if not isinstance(value, str):
        raise QuerySecurityError(f"Value must be a string, got {type(value).__name__}")

    escaped = value.replace("\\", "\\\\")
    escaped = escaped.replace("'", "\\'")
    escaped = escaped.replace('"', '\\"')
    escaped = escaped.replace("\n", "\\n")
    escaped = escaped.replace("\r", "\\r")
    escaped = escaped.replace("\t", "\\t")
    return escaped


def sanitize_object_name(object_name: str) -> str:
    """Validate an object API name.

    Raises:
        InvalidIdentifierError: If the name is empty or malformed
    """
    if not object_name or not isinstance(object_name, str):
        raise InvalidIdentifierError("Object name must be a non-empty string")

    if not OBJECT_NAME_PATTERN.match(object_name):
        raise InvalidIdentifierError(
            f"Invalid object name: {object_name}. Object names must start with a letter "
            "and contain only alphanumeric characters and underscores."
        )

    return object_name


def sanitize_field_name(field_name: str) -> str:
    """Validate a field name, allowing relationship traversal (``Account.Name``).

    Every dot-separated segment must be a valid identifier.

    Raises:
        InvalidIdentifierError: If any segment is malformed
    """
    if not field_name or not isinstance(field_name, str):
        raise InvalidIdentifierError("Field name must be a non-empty string")

    for part in field_name.split("."):
        if not FIELD_SEGMENT_PATTERN.match(part):
            raise InvalidIdentifierError(f"Invalid field name component: {part!r}")

    return field_name


# The generic identifier check used by the query builder
validate_identifier = sanitize_field_name


def sanitize_field_list(fields: list[str]) -> list[str]:
    """Validate a list of fields for a SELECT clause."""
    if not isinstance(fields, list) or not fields:
        raise QuerySecurityError("Fields must be a non-empty list")

    return [sanitize_field_name(field.strip()) for field in fields]


def build_safe_in_clause(field_name: str, values: list[str]) -> str:
    """Build ``field IN ('a', 'b')`` with every value escaped.

    Raises:
        QuerySecurityError: If values is empty
        InvalidIdentifierError: If the field name is malformed
    """
    if not values:
        raise QuerySecurityError("Values list for IN clause cannot be empty")

    sanitized_field = sanitize_field_name(field_name)
    escaped_values = [f"'{escape_soql_string(v)}'" for v in values]

    return f"{sanitized_field} IN ({', '.join(escaped_values)})"


def sanitize_order_by(order_by: str) -> str:
    """Validate an ORDER BY clause such as ``Name ASC, CreatedDate DESC``.

    Raises:
        QuerySecurityError: If any part is not ``field [ASC|DESC]``
    """
    if not order_by or not isinstance(order_by, str):
        raise QuerySecurityError("Order by must be a non-empty string")

    sanitized_parts = []
    for part in (p.strip() for p in order_by.split(",")):
        match = ORDER_BY_PART_PATTERN.match(part)
        if not match:
            raise QuerySecurityError(f"Invalid ORDER BY clause: {part}")

        field = sanitize_field_name(match.group(1))
        direction = match.group(2).upper() if match.group(2) else ""
        sanitized_parts.append(f"{field} {direction}" if direction else field)

    return ", ".join(sanitized_parts)


def sanitize_limit(limit: int) -> int:
    """Validate a LIMIT value (1 to 50000)."""
    if isinstance(limit, bool) or not isinstance(limit, (int, float)):
        raise QuerySecurityError("Limit must be a number")
    if limit < 1 or limit > MAX_QUERY_LIMIT:
        raise QuerySecurityError(f"Limit must be a number between 1 and {MAX_QUERY_LIMIT}")

    return int(limit)


def validate_soql_query(query: str) -> None:
    """Reject assembled queries with known injection shapes.

    Args:
        query: Complete query text

    Raises:
        QuerySecurityError: If the query is empty, not a SELECT, or matches a
            dangerous pattern
    """
    if not query or not isinstance(query, str):
        raise QuerySecurityError("Query must be a non-empty string")

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(query):
            raise QuerySecurityError("Query contains potentially dangerous patterns")

    if not _SELECT_PREFIX.match(query):
        raise QuerySecurityError("Only SELECT queries are allowed")


def build_safe_record_type_query(object_name: str) -> str:
    """Build the active record types query for an object."""
    sanitized_object_name = sanitize_object_name(object_name)
    return (
        "SELECT Id, Name, DeveloperName FROM RecordType "
        f"WHERE SObjectType = '{sanitized_object_name}' AND IsActive = true"
    )
