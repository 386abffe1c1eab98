"""SOQL query construction from template queries and runtime parameters.

Template queries carry textual placeholders (``{externalIdField}``,
``{selectedRecordIds}``) that are resolved in a single templating pass by
``render_placeholders``. ``validate_query`` reports any placeholder that
survives construction.
"""

import re
from collections.abc import Iterator, Mapping
from typing import Any

from crm_migration.query.sanitizer import (
    build_safe_in_clause,
    build_safe_record_type_query,
    escape_soql_string,
    sanitize_field_name,
    sanitize_limit,
    sanitize_object_name,
    sanitize_order_by,
    validate_identifier,
)
from crm_migration.templates.models import ExtractConfig

EXTERNAL_ID_PLACEHOLDER = "{externalIdField}"
SELECTED_RECORD_IDS_PLACEHOLDER = "{selectedRecordIds}"
TARGET_RECORD_TYPE_PLACEHOLDER = "{targetRecordTypeId}"

# Resolved by the load phase, never by query construction
DEFERRED_PLACEHOLDERS = frozenset({"targetRecordTypeId"})

_PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

# Literal that matches no record Id, used when no records were selected
EMPTY_ID_LITERAL = "''"

IN_CLAUSE_CHUNK_SIZE = 1000


def _top_level_positions(query: str) -> Iterator[int]:
    """Yield indexes of characters outside parentheses and string literals."""
    depth = 0
    in_string = False
    escaped = False
    for index, char in enumerate(query):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == "'":
                in_string = False
            continue
        if char == "'":
            in_string = True
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif depth == 0:
            yield index


def _find_top_level_keyword(query: str, keyword: str, start: int = 0) -> int:
    """Return the index of a keyword at paren depth zero, or -1.

    ``keyword`` may contain a space (``ORDER BY``) which matches any run of
    whitespace.
    """
    pattern = re.compile(r"\b" + r"\s+".join(keyword.split()) + r"\b", re.IGNORECASE)
    top_level = set(_top_level_positions(query))
    for match in pattern.finditer(query, start):
        if match.start() in top_level:
            return match.start()
    return -1


def format_selected_record_ids(selected_record_ids: list[str] | None) -> str:
    """Render record ids as a comma-joined list of quoted, escaped literals.

    Returns ``''`` when nothing is selected so ``Id IN ({selectedRecordIds})``
    matches no rows instead of becoming a syntax error.
    """
    if not selected_record_ids:
        return EMPTY_ID_LITERAL
    return ", ".join(f"'{escape_soql_string(record_id)}'" for record_id in selected_record_ids)


def render_placeholders(query: str, values: Mapping[str, str]) -> str:
    """Substitute ``{name}`` placeholders in one pass.

    Placeholders without a value are left in place so ``validate_query`` can
    report them.

    Args:
        query: Template query text
        values: Placeholder name (without braces) to replacement text

    Returns:
        Query with known placeholders substituted
    """

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        return match.group(0)

    return _PLACEHOLDER_PATTERN.sub(_replace, query)


def replace_external_id_placeholders(query: str, external_id_field: str) -> str:
    """Replace every ``{externalIdField}`` with a validated field name."""
    validate_identifier(external_id_field)
    return render_placeholders(query, {"externalIdField": external_id_field})


def replace_selected_record_ids(query: str, selected_record_ids: list[str] | None) -> str:
    """Replace ``{selectedRecordIds}`` with quoted literals."""
    return render_placeholders(
        query, {"selectedRecordIds": format_selected_record_ids(selected_record_ids)}
    )


def add_where_clause(query: str, condition: str) -> str:
    """Add a condition to the top-level WHERE clause.

    The condition is ANDed onto an existing WHERE clause or introduces a new
    one. It is inserted before any GROUP BY, ORDER BY or LIMIT clause.
    """
    insert_at = len(query.rstrip())
    for keyword in ("GROUP BY", "ORDER BY", "LIMIT"):
        position = _find_top_level_keyword(query, keyword)
        if position != -1:
            insert_at = min(insert_at, position)

    head = query[:insert_at].rstrip()
    tail = query[insert_at:].strip()
    connector = "AND" if _find_top_level_keyword(head, "WHERE") != -1 else "WHERE"

    combined = f"{head} {connector} {condition}"
    return f"{combined} {tail}" if tail else combined


def add_order_by_clause(query: str, order_by: str) -> str:
    """Append a sanitized ORDER BY clause ahead of any top-level LIMIT."""
    clause = f"ORDER BY {sanitize_order_by(order_by)}"
    limit_at = _find_top_level_keyword(query, "LIMIT")
    if limit_at == -1:
        return f"{query.rstrip()} {clause}"
    return f"{query[:limit_at].rstrip()} {clause} {query[limit_at:].strip()}"


def build_query(
    extract_config: ExtractConfig,
    external_id_field: str,
    selected_record_ids: list[str] | None = None,
) -> str:
    """Build the final extraction query for a step.

    Args:
        extract_config: Step extraction configuration
        external_id_field: Durable identity field for the queried org/object
        selected_record_ids: Optional ids to restrict extraction to

    Returns:
        Query text with placeholders resolved and filters applied

    Raises:
        InvalidIdentifierError: If the external ID field is malformed
        QuerySecurityError: If the ORDER BY clause is malformed
    """
    query = extract_config.soql_query.strip()
    query = replace_external_id_placeholders(query, external_id_field)

    if SELECTED_RECORD_IDS_PLACEHOLDER in query:
        query = replace_selected_record_ids(query, selected_record_ids)
    elif selected_record_ids:
        query = add_where_clause(query, build_safe_in_clause("Id", list(selected_record_ids)))

    if extract_config.filter_criteria:
        query = add_where_clause(query, extract_config.filter_criteria)

    if extract_config.order_by:
        query = add_order_by_clause(query, extract_config.order_by)

    return query


def validate_query(query: str) -> list[str]:
    """Check an assembled query for construction errors.

    Returns:
        List of violations (empty when the query is well formed)
    """
    errors: list[str] = []

    if not query.strip().upper().startswith("SELECT"):
        errors.append("Query must start with SELECT")

    if _find_top_level_keyword(query, "FROM") == -1:
        errors.append("Query must include FROM clause")

    if EXTERNAL_ID_PLACEHOLDER in query:
        errors.append("Query contains unreplaced external ID field placeholders")

    if SELECTED_RECORD_IDS_PLACEHOLDER in query:
        errors.append("Query contains unreplaced selected record id placeholders")

    if query.count("(") != query.count(")"):
        errors.append("Unbalanced parentheses in query")

    return errors


def find_unresolved_placeholders(query: str) -> list[str]:
    """List placeholder names still present, ignoring load-phase placeholders."""
    return [
        name for name in _PLACEHOLDER_PATTERN.findall(query) if name not in DEFERRED_PLACEHOLDERS
    ]


def extract_object_name(query: str) -> str | None:
    """Return the object named in the top-level FROM clause."""
    position = _find_top_level_keyword(query, "FROM")
    if position == -1:
        return None
    match = re.match(r"FROM\s+(\w+)", query[position:], re.IGNORECASE)
    return match.group(1) if match else None


def extract_field_names(query: str) -> list[str]:
    """Return the raw SELECT list entries of a query."""
    select_match = re.match(r"\s*SELECT\s+", query, re.IGNORECASE)
    from_position = _find_top_level_keyword(query, "FROM")
    if not select_match or from_position == -1:
        return []

    fields_string = query[select_match.end() : from_position]
    fields: list[str] = []
    current = ""
    depth = 0
    for char in fields_string:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            fields.append(current.strip())
            current = ""
        else:
            current += char
    fields.append(current.strip())

    return [field for field in fields if field]


def parse_query(query: str) -> dict[str, Any]:
    """Split a query into its fields, object and clauses."""
    where_clause = None
    where_position = _find_top_level_keyword(query, "WHERE")
    if where_position != -1:
        end = len(query)
        for keyword in ("GROUP BY", "ORDER BY", "LIMIT"):
            position = _find_top_level_keyword(query, keyword, where_position)
            if position != -1:
                end = min(end, position)
        where_clause = query[where_position + len("WHERE") : end].strip()

    order_by = None
    order_position = _find_top_level_keyword(query, "ORDER BY")
    if order_position != -1:
        limit_position = _find_top_level_keyword(query, "LIMIT", order_position)
        end = limit_position if limit_position != -1 else len(query)
        order_by = re.sub(
            r"^ORDER\s+BY\s+", "", query[order_position:end].strip(), flags=re.IGNORECASE
        )

    limit = None
    limit_position = _find_top_level_keyword(query, "LIMIT")
    if limit_position != -1:
        limit_match = re.match(r"LIMIT\s+(\d+)", query[limit_position:], re.IGNORECASE)
        if limit_match:
            limit = int(limit_match.group(1))

    return {
        "fields": extract_field_names(query),
        "object_name": extract_object_name(query),
        "where_clause": where_clause,
        "order_by": order_by,
        "limit": limit,
    }


def build_validation_query(target_object: str, target_field: str, source_values: list[str]) -> str:
    """Build a query fetching target rows whose key is one of source_values."""
    sanitized_object = sanitize_object_name(target_object)
    sanitized_field = sanitize_field_name(target_field)
    where_clause = build_safe_in_clause(sanitized_field, source_values)
    return f"SELECT Id, {sanitized_field}, Name FROM {sanitized_object} WHERE {where_clause}"


def build_count_query(base_query: str) -> str:
    """Replace the SELECT list with COUNT(), keeping FROM/WHERE/GROUP BY."""
    from_position = _find_top_level_keyword(base_query, "FROM")
    if from_position == -1:
        return base_query
    return f"SELECT COUNT() {base_query[from_position:].strip()}"


def optimize_for_batch(query: str, batch_size: int) -> str:
    """Append ``LIMIT batch_size`` when the query has no top-level LIMIT."""
    if batch_size > 0 and _find_top_level_keyword(query, "LIMIT") == -1:
        return f"{query.rstrip()} LIMIT {sanitize_limit(batch_size)}"
    return query


def build_record_type_query(object_name: str) -> str:
    """Build the active record types query for an object."""
    return build_safe_record_type_query(object_name)


def build_lookup_cache_query(
    lookup_object: str,
    key_field: str,
    value_field: str,
    additional_fields: list[str] | None = None,
) -> str:
    """Build the query that caches a lookup's key/value pairs.

    ``Name`` is always selected so reports can name missing targets.
    """
    sanitized_object = sanitize_object_name(lookup_object)
    sanitized_key = sanitize_field_name(key_field)
    fields = [sanitized_key, sanitize_field_name(value_field)]
    for field in [*(additional_fields or []), "Name"]:
        sanitized = sanitize_field_name(field)
        if sanitized not in fields:
            fields.append(sanitized)

    return f"SELECT {', '.join(fields)} FROM {sanitized_object} WHERE {sanitized_key} != null"


def build_in_clause(
    field: str, values: list[str], max_chunk_size: int = IN_CLAUSE_CHUNK_SIZE
) -> list[str]:
    """Build IN clauses for large value sets, one per chunk."""
    return [
        build_safe_in_clause(field, values[i : i + max_chunk_size])
        for i in range(0, len(values), max_chunk_size)
    ]
