"""
InfluxQL query validator - only allow safe read operations

validate_query() is a pure function: no I/O, no state, same answer for the
same input. The gateway calls it before anything reaches InfluxDB.
"""
import re
from typing import NamedTuple, Optional

ALLOWED_VERBS = ('SELECT', 'SHOW')

# Keywords that modify data or schema. INTO covers SELECT ... INTO.
BLOCKED_KEYWORDS = (
    'DROP',
    'DELETE',
    'CREATE',
    'ALTER',
    'GRANT',
    'REVOKE',
    'INSERT',
    'INTO',
    'KILL',
)

EMPTY_QUERY_ERROR = 'Query must be a non-empty string'
READ_ONLY_ERROR = 'Only SELECT and SHOW queries are allowed'
CROSS_DATABASE_ERROR = 'Cross-database queries are not allowed'

# Hyphens count as identifier characters: UnPoller fields look like "rx_bytes-r"
_BLOCKED_PATTERNS = tuple(
    (keyword, re.compile(rf'(?<![\w-]){keyword}(?![\w-])', re.IGNORECASE))
    for keyword in BLOCKED_KEYWORDS
)

# FROM other_db..measurement, FROM "other_db".."measurement", or the same after a comma
_CROSS_DATABASE_PATTERN = re.compile(r'(?:\bFROM\b|,)\s*["\']?[\w-]+["\']?\s*\.\.', re.IGNORECASE)


class ValidationResult(NamedTuple):
    valid: bool
    error: Optional[str] = None

    def to_dict(self):
        if self.valid:
            return {'valid': True}
        return {'valid': False, 'error': self.error}


def validate_query(query) -> ValidationResult:
    """
    Check that a statement is a read-only query against the configured database.

    Args:
        query: Proposed InfluxQL statement

    Returns:
        ValidationResult: valid flag plus a human readable reason when rejected
    """
    if not query or not isinstance(query, str):
        return ValidationResult(False, EMPTY_QUERY_ERROR)

    normalized = re.sub(r'\s+', ' ', query).strip().upper()

    if not any(normalized.startswith(verb + ' ') for verb in ALLOWED_VERBS):
        return ValidationResult(False, READ_ONLY_ERROR)

    for keyword, pattern in _BLOCKED_PATTERNS:
        if pattern.search(query):
            return ValidationResult(False, f'Forbidden keyword: {keyword}')

    if _CROSS_DATABASE_PATTERN.search(query):
        return ValidationResult(False, CROSS_DATABASE_ERROR)

    return ValidationResult(True)
