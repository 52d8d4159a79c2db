"""
SQL Studio - Identifier & Row-Data Guard
========================================

Every table name, column name and row payload that arrives over the API
passes through this module before it is spliced into generated SQL.

RULES:
1. Identifiers match ^[A-Za-z_][A-Za-z0-9_]*$ and are at most 128 chars
2. Injection characters (comments, separators, quotes, backslash) are
   rejected even though the pattern alone already excludes them
3. Reserved words ARE valid identifiers: a column called "order" or
   "delete" is fine because every identifier is double-quoted by
   quote_identifier() at the point of SQL generation
4. Row payloads are flat objects with 1..100 keys, every key an identifier

Values are never validated here. They are always bound as parameters.

Author: SQL Studio Team
"""

import re
import logging
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# Rejection Taxonomy
# =============================================================================

class RejectionReason(Enum):
    """Template a rejection message was drawn from."""
    INVALID_TYPE          = "invalid_type"
    EXCEEDS_LENGTH        = "exceeds_length"
    BAD_PATTERN           = "bad_pattern"
    DANGEROUS_CHARACTERS  = "dangerous_characters"
    DISALLOWED_VERB       = "disallowed_verb"
    DISALLOWED_SUB_VERB   = "disallowed_sub_verb"
    DANGEROUS_KEYWORD     = "dangerous_keyword"
    BLOCKED_SCHEMA_OBJECT = "blocked_schema_object"
    MULTI_STATEMENT       = "multi_statement"
    COMMENT_PRESENT       = "comment_present"
    EMPTY_PAYLOAD         = "empty_payload"
    TOO_MANY_COLUMNS      = "too_many_columns"


class ValidationRejected(ValueError):
    """
    Raised when an identifier, statement or payload fails a guard.

    The message is safe to hand back to the caller verbatim.
    """

    def __init__(self, message: str, reason: RejectionReason):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def __repr__(self) -> str:
        return f"ValidationRejected({self.reason.value}: {self.message!r})"


def reject(message: str, reason: RejectionReason) -> ValidationRejected:
    """Log and build a rejection. Callers `raise reject(...)`."""
    logger.warning(f"Rejected [{reason.value}]: {message}")
    return ValidationRejected(message, reason)


# =============================================================================
# Identifier Validator / Quoter
# =============================================================================

MAX_IDENTIFIER_LENGTH = 128
MAX_ROW_COLUMNS = 100

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Checked after the pattern on purpose; the pattern already excludes all of
# these, so this list only matters if the pattern is ever loosened.
DANGEROUS_SEQUENCES = ("--", "/*", "*/", ";", "'", '"', "`", "\\")


def validate_identifier(identifier: Any, kind: str = "identifier") -> None:
    """
    Validate a table or column name.

    Args:
        identifier: Candidate name
        kind: Label used in error text ("table name", "column name", ...)

    Raises:
        ValidationRejected: If the name is not a safe identifier
    """
    if not identifier or not isinstance(identifier, str):
        raise reject(
            f"Invalid {kind}: must be a non-empty string",
            RejectionReason.INVALID_TYPE,
        )

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise reject(
            f"Invalid {kind}: exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters",
            RejectionReason.EXCEEDS_LENGTH,
        )

    if not IDENTIFIER_PATTERN.match(identifier):
        raise reject(
            f"Invalid {kind}: must contain only letters, numbers, and underscores, "
            f"and start with a letter or underscore",
            RejectionReason.BAD_PATTERN,
        )

    for sequence in DANGEROUS_SEQUENCES:
        if sequence in identifier:
            raise reject(
                f"Invalid {kind}: contains potentially dangerous characters",
                RejectionReason.DANGEROUS_CHARACTERS,
            )


def validate_identifiers(identifiers: Any, kind: str = "identifier") -> None:
    """Validate a non-empty list of names. First failure wins."""
    if not isinstance(identifiers, (list, tuple)) or len(identifiers) == 0:
        raise reject(
            f"Invalid {kind}s: must be a non-empty array",
            RejectionReason.INVALID_TYPE,
        )

    for identifier in identifiers:
        validate_identifier(identifier, kind)


def quote_identifier(identifier: str) -> str:
    """
    Wrap a validated identifier in double quotes.

    Embedded double quotes are doubled (standard SQL escaping). This is not
    a substitute for validate_identifier().

    Example:
        >>> quote_identifier("order")
        '"order"'
    """
    return '"' + identifier.replace('"', '""') + '"'


def quote_identifiers(identifiers: Iterable[str]) -> str:
    """Comma-joined quoted identifiers for column lists."""
    return ", ".join(quote_identifier(identifier) for identifier in identifiers)


# =============================================================================
# Row-Data Validator
# =============================================================================

def validate_row_data(data: Any) -> None:
    """
    Validate the keys of an INSERT/UPDATE payload.

    Raises:
        ValidationRejected: If data is not a flat object, is empty, has an
            invalid column name, or has more than MAX_ROW_COLUMNS keys
    """
    if not isinstance(data, Mapping):
        raise reject("Invalid data: must be an object", RejectionReason.INVALID_TYPE)

    keys = list(data.keys())
    if not keys:
        raise reject(
            "Invalid data: must contain at least one field",
            RejectionReason.EMPTY_PAYLOAD,
        )

    validate_identifiers(keys, "column name")

    if len(keys) > MAX_ROW_COLUMNS:
        raise reject(
            f"Invalid data: too many columns (max {MAX_ROW_COLUMNS})",
            RejectionReason.TOO_MANY_COLUMNS,
        )


# =============================================================================
# Pagination
# =============================================================================

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000

# Largest value SQLite can bind as an INTEGER
MAX_SQL_INTEGER = 2 ** 63 - 1


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def validate_pagination(page: Any, limit: Any) -> Tuple[int, int]:
    """
    Normalize page/limit query parameters.

    Garbage falls back to defaults, limit is clamped to 1..MAX_PAGE_SIZE and
    page is capped so the resulting OFFSET fits a signed 64-bit integer.
    """
    page_value = _to_int(page) or 1
    limit_value = _to_int(limit) or DEFAULT_PAGE_SIZE

    limit_value = min(MAX_PAGE_SIZE, max(1, limit_value))
    max_page = MAX_SQL_INTEGER // limit_value + 1
    return min(max_page, max(1, page_value)), limit_value


# =============================================================================
# Column Definitions (ALTER TABLE ... ADD COLUMN)
# =============================================================================

# TEXT, INTEGER, VARCHAR(255), DECIMAL(10, 2), DOUBLE PRECISION
COLUMN_TYPE_PATTERN = re.compile(
    r"^[A-Za-z]+(?: [A-Za-z]+)?(?:\s*\(\s*\d{1,5}\s*(?:,\s*\d{1,5}\s*)?\))?$"
)

CONSTRAINT_TOKEN_PATTERN = re.compile(
    r"""
    \s*
    (
        NOT\s+NULL
      | NULL
      | UNIQUE
      | DEFAULT\s+(?:
            NULL | TRUE | FALSE
          | CURRENT_TIMESTAMP | CURRENT_DATE | CURRENT_TIME
          | [+-]?\d+(?:\.\d+)?
          | '[^';\\]*'
        )
    )
    (?=\s|$)
    """,
    re.IGNORECASE | re.VERBOSE,
)


def validate_column_type(column_type: Any) -> str:
    """Validate a SQLite type name and return it upper-cased."""
    if not column_type or not isinstance(column_type, str):
        raise reject(
            "Invalid column type: must be a non-empty string",
            RejectionReason.INVALID_TYPE,
        )

    column_type = column_type.strip()
    if len(column_type) > 64 or not COLUMN_TYPE_PATTERN.match(column_type):
        raise reject(
            f"Invalid column type: '{column_type[:64]}' is not a recognised type name",
            RejectionReason.BAD_PATTERN,
        )

    return column_type.upper()


def validate_column_constraints(constraints: Any) -> str:
    """
    Validate optional column constraints.

    Allowed: NOT NULL, NULL, UNIQUE, DEFAULT <literal>. Returns the
    normalized constraint text ("" when none were given).
    """
    if constraints is None:
        return ""
    if not isinstance(constraints, str):
        raise reject(
            "Invalid column constraints: must be a string",
            RejectionReason.INVALID_TYPE,
        )

    text = constraints.strip()
    if not text:
        return ""

    if "--" in text or "/*" in text or "*/" in text:
        raise reject(
            "Invalid column constraints: comments are not permitted",
            RejectionReason.COMMENT_PRESENT,
        )

    parts = []
    position = 0
    while position < len(text):
        match = CONSTRAINT_TOKEN_PATTERN.match(text, position)
        if not match:
            raise reject(
                "Invalid column constraints: only NOT NULL, NULL, UNIQUE and "
                "DEFAULT <literal> are permitted",
                RejectionReason.BAD_PATTERN,
            )
        parts.append(match.group(1))
        position = match.end()
        while position < len(text) and text[position].isspace():
            position += 1

    return " ".join(parts)
