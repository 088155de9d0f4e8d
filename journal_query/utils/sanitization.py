"""
Identity-token and SQL sanitization for planner-generated queries.

Planner SQL refers to the current subject through the ``auth.uid()``
placeholder. Before a query is sent to the store the placeholder is replaced
with the caller-supplied identity token, which must first pass a strict
UUID grammar check so it can never smuggle SQL into the statement.
"""
import re
import logging
from typing import List, Optional, Tuple

from journal_query.exceptions import SanitizationError

logger = logging.getLogger(__name__)

IDENTITY_TOKEN_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$',
    re.IGNORECASE
)

SUBJECT_PLACEHOLDER_PATTERN = re.compile(r'auth\.uid\(\)', re.IGNORECASE)

# Bare UUID literals compared against user_id are quoted with the validated token
UNQUOTED_USER_ID_PATTERN = re.compile(r'user_id\s*=\s*([a-f0-9-]{36})(?![\w\'-])', re.IGNORECASE)

FORBIDDEN_SQL_PATTERNS = [
    (keyword, re.compile(pattern))
    for keyword, pattern in (
        ("DROP", r"\bDROP\b"),
        ("DELETE FROM", r"\bDELETE\s+FROM\b"),
        ("INSERT INTO", r"\bINSERT\s+INTO\b"),
        ("UPDATE ... SET", r"\bUPDATE\s+(\"[^\"]+\"|\S+)\s+SET\b"),
        ("CREATE", r"\bCREATE\b"),
        ("ALTER", r"\bALTER\b"),
        ("TRUNCATE", r"\bTRUNCATE\b"),
        ("GRANT", r"\bGRANT\b"),
        ("REVOKE", r"\bREVOKE\b"),
    )
]

# Single-quoted literals, with '' as the escaped quote
QUOTED_LITERAL_PATTERN = re.compile(r"'(?:[^']|'')*'")

JOURNAL_TABLE_MARKERS = ('JOURNAL ENTRIES', 'ENTRIES')

TIME_COMPARISON_PATTERN = re.compile(r'CREATED_AT[^;]*?(>|<|BETWEEN)', re.IGNORECASE | re.DOTALL)

# Quoted literals inside planner SQL usually carry the themes/emotions being searched for
SQL_STRING_LITERAL_PATTERN = re.compile(r"'([^']+)'")

SQL_NOISE_LITERALS = re.compile(r'^(\d{4}-\d{2}-\d{2}.*|[0-9a-f-]{36}|\d+|utc)$', re.IGNORECASE)


def is_valid_identity_token(token: Optional[str]) -> bool:
    """Return True when ``token`` matches the identity-token (UUID v1-v5) grammar."""
    return bool(token) and bool(IDENTITY_TOKEN_PATTERN.match(token))


def strip_statement_terminators(query: str) -> str:
    """Trim whitespace and any trailing ``;`` terminators."""
    return re.sub(r'[\s;]+$', '', query.strip())


def sanitize_identity_in_query(query: str, identity_token: str) -> str:
    """
    Substitute the current-subject placeholder with the validated identity token.

    Args:
        query: Planner SQL containing ``auth.uid()`` placeholders
        identity_token: Caller-supplied subject identifier

    Returns:
        The query with every placeholder replaced by the quoted token

    Raises:
        SanitizationError: If the token is not a syntactically valid identity token
    """
    if not is_valid_identity_token(identity_token):
        raise SanitizationError("Invalid user ID format")

    sanitized = SUBJECT_PLACEHOLDER_PATTERN.sub(f"'{identity_token}'", query)
    sanitized = UNQUOTED_USER_ID_PATTERN.sub(f"user_id = '{identity_token}'", sanitized)
    return sanitized


def validate_sql_query(query: str, has_time_range: bool = False) -> Tuple[bool, Optional[str]]:
    """
    Check that planner SQL is a read-only query over the journal table.

    Args:
        query: Query text, already stripped of terminators
        has_time_range: Whether the step declared a time range; a query that
            ignores it is logged but still accepted

    Returns:
        (is_valid, error message or None)
    """
    upper_query = query.upper().strip()
    # Keywords and separators inside string literals are data, not SQL
    code_only = QUOTED_LITERAL_PATTERN.sub("''", upper_query)

    for keyword, keyword_regex in FORBIDDEN_SQL_PATTERNS:
        # Word boundaries so COALESCE/CREATED_AT never match CREATE
        if keyword_regex.search(code_only):
            return False, f"Dangerous SQL keyword detected: {keyword}"

    if not (upper_query.startswith('SELECT') or upper_query.startswith('WITH')):
        return False, "Only SELECT queries are allowed"

    if ';' in code_only:
        return False, "Multiple statements are not allowed"

    if not any(marker in upper_query for marker in JOURNAL_TABLE_MARKERS):
        return False, "Query must reference Journal Entries table"

    if has_time_range and not TIME_COMPARISON_PATTERN.search(query):
        logger.warning("SQL query does not filter on created_at although the step declares a time range")

    return True, None


def extract_search_terms_from_sql(sql_query: str) -> str:
    """
    Pull human-meaningful terms (theme and emotion literals) out of planner SQL.

    Dates, UUIDs and numbers are skipped. Returns an empty string when the
    query carries no usable literal.
    """
    terms: List[str] = []
    for literal in SQL_STRING_LITERAL_PATTERN.findall(sql_query or ""):
        literal = literal.strip().strip('%').strip()
        if not literal or SQL_NOISE_LITERALS.match(literal):
            continue
        if literal not in terms:
            terms.append(literal)
    return " ".join(terms)


def truncate_content(text: Optional[str], max_length: int = 500) -> str:
    """Bound the length of journal text placed into summaries."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."
