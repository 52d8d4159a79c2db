"""
SQL Studio - Statement Policy Filter
====================================

Decides whether a raw, user-supplied SQL statement may be forwarded to the
engine unmodified. Used by POST /api/query (general filter) and
POST /api/tables (CREATE TABLE filter).

GENERAL FILTER (first failing rule wins):
1. Non-empty string
2. Leading verb in SELECT, PRAGMA, INSERT, UPDATE, DELETE, CREATE, DROP
3. CREATE / DROP only for indexes (CREATE [UNIQUE] INDEX, DROP INDEX)
4. Quoted spans ("...", '...', `...`) are emptied on a scratch copy
5. Scratch copy must not contain ALTER, TRUNCATE, EXEC, EXECUTE, ATTACH,
   DETACH as whole words
6. Scratch copy must not contain CREATE/DROP TABLE|VIEW|TRIGGER|DATABASE
7. Exactly one statement (split on ';', blank fragments ignored)
8. No comments (--, /*, */) anywhere

WHAT THIS IS NOT:
- NOT a SQL parser (lexical rules only)
- NOT a substitute for bound parameters; values are never interpolated
- NOT schema-aware (missing tables are reported by the engine)

Author: SQL Studio Team
"""

import re
import logging
from enum import Enum
from typing import Any, List, Optional

from sql_guard import RejectionReason, reject

logger = logging.getLogger(__name__)


class StatementVerb(Enum):
    """Classification of an accepted statement."""
    SELECT              = "SELECT"
    PRAGMA              = "PRAGMA"
    INSERT              = "INSERT"
    UPDATE              = "UPDATE"
    DELETE              = "DELETE"
    CREATE_INDEX        = "CREATE-INDEX"
    CREATE_UNIQUE_INDEX = "CREATE-UNIQUE-INDEX"
    DROP_INDEX          = "DROP-INDEX"


# =============================================================================
# Quoted-content stripping
# =============================================================================

_DOUBLE_QUOTED = re.compile(r'"[^"]*"')
_SINGLE_QUOTED = re.compile(r"'[^']*'")
_BACKTICK_QUOTED = re.compile(r"`[^`]*`")


def strip_quoted_content(sql: str) -> str:
    """
    Empty every quoted span while keeping its quote markers.

    Keywords inside string literals or quoted identifiers must not trip the
    keyword scans, e.g. CREATE TABLE "order" ("delete" TEXT).
    """
    stripped = _DOUBLE_QUOTED.sub('""', sql)
    stripped = _SINGLE_QUOTED.sub("''", stripped)
    return _BACKTICK_QUOTED.sub("``", stripped)


def count_statements(sql: str) -> int:
    """Number of non-blank ';'-separated fragments in the raw text."""
    return len([fragment for fragment in sql.split(";") if fragment.strip()])


def _contains_word(text: str, keyword: str) -> bool:
    return re.search(rf"\b{keyword}\b", text) is not None


def _has_comment(sql: str, markers=("--", "/*", "*/")) -> bool:
    return any(marker in sql for marker in markers)


# =============================================================================
# General statement filter
# =============================================================================

class StatementPolicyFilter:
    """
    Index-permitting statement policy.

    Row reads and writes plus index maintenance are allowed; schema changes
    to tables, views, triggers and databases must go through the dedicated
    table endpoints.
    """

    ALLOWED_VERBS = ("SELECT", "PRAGMA", "INSERT", "UPDATE", "DELETE", "CREATE", "DROP")

    DANGEROUS_KEYWORDS = ("ALTER", "TRUNCATE", "EXEC", "EXECUTE", "ATTACH", "DETACH")

    BLOCKED_SCHEMA_OBJECTS = ("TABLE", "VIEW", "TRIGGER", "DATABASE")

    def validate(self, sql: Any) -> StatementVerb:
        """
        Validate a raw statement.

        Args:
            sql: Complete SQL text of a single statement

        Returns:
            StatementVerb of the accepted statement

        Raises:
            ValidationRejected: On the first rule the statement breaks
        """
        if not sql or not isinstance(sql, str) or not sql.strip():
            raise reject("Invalid SQL: must be a non-empty string", RejectionReason.INVALID_TYPE)

        tokens = sql.strip().split()
        verb = tokens[0].upper()

        if verb not in self.ALLOWED_VERBS:
            raise reject(
                "SQL statement not allowed: only SELECT, PRAGMA, INSERT, UPDATE, DELETE, "
                f"CREATE INDEX, DROP INDEX queries are permitted. Received: {verb}",
                RejectionReason.DISALLOWED_VERB,
            )

        classified = self._classify(verb, tokens)

        scratch = strip_quoted_content(sql).upper()

        for keyword in self.DANGEROUS_KEYWORDS:
            if _contains_word(scratch, keyword):
                raise reject(
                    f"SQL statement not allowed: contains dangerous keyword '{keyword}'",
                    RejectionReason.DANGEROUS_KEYWORD,
                )

        for schema_object in self.BLOCKED_SCHEMA_OBJECTS:
            if re.search(rf"\b(CREATE|DROP)\s+{schema_object}\b", scratch):
                raise reject(
                    f"SQL statement not allowed: CREATE/DROP {schema_object} is not permitted. "
                    "Use the UI or API for table/view management.",
                    RejectionReason.BLOCKED_SCHEMA_OBJECT,
                )

        if count_statements(sql) > 1:
            raise reject(
                "SQL statement not allowed: multiple statements detected. "
                "Only single queries are permitted.",
                RejectionReason.MULTI_STATEMENT,
            )

        if _has_comment(sql):
            raise reject(
                "SQL statement not allowed: comments are not permitted",
                RejectionReason.COMMENT_PRESENT,
            )

        logger.debug(f"Statement accepted as {classified.value}")
        return classified

    def _classify(self, verb: str, tokens: List[str]) -> StatementVerb:
        """Map the leading tokens to a verb, enforcing the index-only rule."""
        second = self._token(tokens, 1)

        if verb == "CREATE":
            if second == "INDEX":
                return StatementVerb.CREATE_INDEX
            if second == "UNIQUE":
                if self._token(tokens, 2) == "INDEX":
                    return StatementVerb.CREATE_UNIQUE_INDEX
                raise reject(
                    "SQL statement not allowed: only CREATE UNIQUE INDEX is permitted after CREATE UNIQUE.",
                    RejectionReason.DISALLOWED_SUB_VERB,
                )
            raise reject(
                "SQL statement not allowed: only CREATE INDEX and CREATE UNIQUE INDEX are permitted. "
                "Use the UI or API for other schema changes.",
                RejectionReason.DISALLOWED_SUB_VERB,
            )

        if verb == "DROP":
            if second == "INDEX":
                return StatementVerb.DROP_INDEX
            raise reject(
                "SQL statement not allowed: only DROP INDEX is permitted. "
                "Use the UI or API for other schema changes.",
                RejectionReason.DISALLOWED_SUB_VERB,
            )

        return StatementVerb(verb)

    @staticmethod
    def _token(tokens: List[str], index: int) -> Optional[str]:
        return tokens[index].upper() if len(tokens) > index else None


# =============================================================================
# CREATE TABLE filter
# =============================================================================

class CreateTableFilter:
    """
    Stricter filter for the table-creation endpoint.

    Only a single CREATE TABLE statement gets through; it is a separate,
    higher-privilege flow from the general query executor.
    """

    LEADING_PATTERN = re.compile(r"^\s*CREATE\s+TABLE\b", re.IGNORECASE)

    FORBIDDEN_KEYWORDS = (
        "DROP", "DELETE", "INSERT", "UPDATE",
        "EXEC", "EXECUTE", "ALTER", "ATTACH", "DETACH",
    )

    def validate(self, sql: Any) -> None:
        if not sql or not isinstance(sql, str) or not sql.strip():
            raise reject("Invalid SQL: must be a non-empty string", RejectionReason.INVALID_TYPE)

        if not self.LEADING_PATTERN.match(sql):
            raise reject(
                "Invalid SQL: only CREATE TABLE statements are allowed",
                RejectionReason.DISALLOWED_VERB,
            )

        if count_statements(sql) > 1:
            raise reject(
                "Invalid SQL: multiple statements are not allowed",
                RejectionReason.MULTI_STATEMENT,
            )

        scratch = strip_quoted_content(sql).upper()
        for keyword in self.FORBIDDEN_KEYWORDS:
            if _contains_word(scratch, keyword):
                raise reject(
                    f"Invalid SQL: CREATE TABLE statement contains forbidden keyword '{keyword}'",
                    RejectionReason.DANGEROUS_KEYWORD,
                )

        if _has_comment(sql, markers=("--", "/*")):
            raise reject(
                "Invalid SQL: comments are not permitted",
                RejectionReason.COMMENT_PRESENT,
            )


# =============================================================================
# Module-level helpers
# =============================================================================

_statement_filter = StatementPolicyFilter()
_create_table_filter = CreateTableFilter()


def validate_sql_statement(sql: Any) -> StatementVerb:
    """Validate a raw statement for the general query endpoint."""
    return _statement_filter.validate(sql)


def validate_create_table_statement(sql: Any) -> None:
    """Validate a statement for the table-creation endpoint."""
    _create_table_filter.validate(sql)
