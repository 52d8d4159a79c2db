"""
Tests for identifier validation/quoting, row-data validation, pagination
and column definitions. No DB required.
"""

import unittest

from sql_guard import (
    MAX_IDENTIFIER_LENGTH,
    MAX_SQL_INTEGER,
    RejectionReason,
    ValidationRejected,
    quote_identifier,
    quote_identifiers,
    validate_column_constraints,
    validate_column_type,
    validate_identifier,
    validate_identifiers,
    validate_pagination,
    validate_row_data,
)


def unquote(quoted: str) -> str:
    """Inverse of quote_identifier, for tests only."""
    assert quoted.startswith('"') and quoted.endswith('"')
    return quoted[1:-1].replace('""', '"')


class TestValidateIdentifier(unittest.TestCase):

    def assertRejected(self, candidate, reason=None):
        with self.assertRaises(ValidationRejected) as ctx:
            validate_identifier(candidate, "column name")
        if reason is not None:
            self.assertEqual(ctx.exception.reason, reason)
        return ctx.exception

    # --- accepted ---

    def test_plain_names_accepted(self):
        for name in ["users", "_private", "Table1", "a", "snake_case_name", "_"]:
            validate_identifier(name, "table name")

    def test_reserved_words_accepted(self):
        for name in ["order", "select", "delete", "group", "update", "from", "DROP", "table"]:
            validate_identifier(name, "column name")

    def test_max_length_accepted(self):
        validate_identifier("a" * MAX_IDENTIFIER_LENGTH)

    # --- rejected ---

    def test_empty_and_non_string_rejected(self):
        for candidate in ["", None, 42, ["users"]]:
            self.assertRejected(candidate, RejectionReason.INVALID_TYPE)

    def test_too_long_rejected(self):
        error = self.assertRejected("a" * (MAX_IDENTIFIER_LENGTH + 1), RejectionReason.EXCEEDS_LENGTH)
        self.assertIn("128", error.message)

    def test_leading_digit_rejected(self):
        self.assertRejected("1abc", RejectionReason.BAD_PATTERN)

    def test_embedded_space_rejected(self):
        self.assertRejected("first name", RejectionReason.BAD_PATTERN)

    def test_injection_characters_rejected(self):
        for candidate in ["a;b", "users--", "a/*b", "x'y", 'x"y', "x`y", "x\\y", "t; DROP TABLE t"]:
            self.assertRejected(candidate)

    def test_message_uses_kind_label(self):
        error = self.assertRejected("1abc")
        self.assertTrue(error.message.startswith("Invalid column name:"))

    def test_rejection_is_value_error(self):
        with self.assertRaises(ValueError):
            validate_identifier("bad name")


class TestValidateIdentifiers(unittest.TestCase):

    def test_list_accepted(self):
        validate_identifiers(["id", "order", "name"], "column name")

    def test_empty_list_rejected(self):
        with self.assertRaises(ValidationRejected) as ctx:
            validate_identifiers([], "column name")
        self.assertEqual(ctx.exception.message, "Invalid column names: must be a non-empty array")

    def test_non_list_rejected(self):
        with self.assertRaises(ValidationRejected):
            validate_identifiers("id", "column name")

    def test_first_failure_wins(self):
        with self.assertRaises(ValidationRejected) as ctx:
            validate_identifiers(["ok", "1bad", "a" * 200], "column name")
        self.assertEqual(ctx.exception.reason, RejectionReason.BAD_PATTERN)


class TestQuoteIdentifier(unittest.TestCase):

    def test_wraps_in_double_quotes(self):
        self.assertEqual(quote_identifier("order"), '"order"')

    def test_embedded_quote_doubled(self):
        self.assertEqual(quote_identifier('we"ird'), '"we""ird"')

    def test_unquote_inverts_quote(self):
        for name in ["users", "order", 'a"b', '""', "x" * 128]:
            quoted = quote_identifier(name)
            self.assertTrue(quoted.startswith('"') and quoted.endswith('"'))
            self.assertEqual(unquote(quoted), name)

    def test_quote_identifiers_joins(self):
        self.assertEqual(quote_identifiers(["id", "order"]), '"id", "order"')


class TestValidateRowData(unittest.TestCase):

    def test_valid_row_accepted(self):
        validate_row_data({"name": "Ann", "age": 30})

    def test_reserved_word_key_accepted(self):
        validate_row_data({"order": 5})

    def test_empty_rejected(self):
        with self.assertRaises(ValidationRejected) as ctx:
            validate_row_data({})
        self.assertEqual(ctx.exception.reason, RejectionReason.EMPTY_PAYLOAD)
        self.assertEqual(ctx.exception.message, "Invalid data: must contain at least one field")

    def test_non_object_rejected(self):
        for data in [None, [], ["a"], "a=1", 5]:
            with self.assertRaises(ValidationRejected) as ctx:
                validate_row_data(data)
            self.assertEqual(ctx.exception.reason, RejectionReason.INVALID_TYPE)

    def test_too_many_columns_rejected(self):
        data = {f"c{i}": i for i in range(101)}
        with self.assertRaises(ValidationRejected) as ctx:
            validate_row_data(data)
        self.assertEqual(ctx.exception.reason, RejectionReason.TOO_MANY_COLUMNS)

    def test_hundred_columns_accepted(self):
        validate_row_data({f"c{i}": i for i in range(100)})

    def test_bad_key_rejected(self):
        with self.assertRaises(ValidationRejected) as ctx:
            validate_row_data({"1abc": 1})
        self.assertIn("column name", ctx.exception.message)

    def test_values_not_inspected(self):
        validate_row_data({"note": "'; DROP TABLE users; --"})


class TestValidatePagination(unittest.TestCase):

    def test_defaults(self):
        self.assertEqual(validate_pagination(None, None), (1, 50))

    def test_strings_parsed(self):
        self.assertEqual(validate_pagination("3", "20"), (3, 20))

    def test_garbage_falls_back(self):
        self.assertEqual(validate_pagination("abc", "nan"), (1, 50))

    def test_limit_clamped(self):
        self.assertEqual(validate_pagination(1, 5000), (1, 1000))
        self.assertEqual(validate_pagination(-2, -5), (1, 1))

    def test_floats_floored(self):
        self.assertEqual(validate_pagination(2.9, 10.5), (2, 10))

    def test_huge_page_keeps_offset_bindable(self):
        for limit in [1, 50, 1000]:
            page, limit = validate_pagination("1e20", limit)
            self.assertLessEqual((page - 1) * limit, MAX_SQL_INTEGER)
            self.assertGreater(page, 1)
        self.assertEqual(validate_pagination("1e400", 10), (1, 10))


class TestColumnDefinitions(unittest.TestCase):

    def test_type_names_accepted(self):
        self.assertEqual(validate_column_type("text"), "TEXT")
        self.assertEqual(validate_column_type("varchar(255)"), "VARCHAR(255)")
        self.assertEqual(validate_column_type("DECIMAL(10, 2)"), "DECIMAL(10, 2)")
        self.assertEqual(validate_column_type("double precision"), "DOUBLE PRECISION")

    def test_type_injection_rejected(self):
        for column_type in ["TEXT; DROP TABLE x", "INT -- x", "INTEGER PRIMARY KEY AUTOINCREMENT", "", None]:
            with self.assertRaises(ValidationRejected):
                validate_column_type(column_type)

    def test_constraints_accepted(self):
        self.assertEqual(validate_column_constraints(None), "")
        self.assertEqual(validate_column_constraints("  "), "")
        self.assertEqual(validate_column_constraints("NOT NULL DEFAULT 0"), "NOT NULL DEFAULT 0")
        self.assertEqual(validate_column_constraints("default 'n/a' unique"), "default 'n/a' unique")
        self.assertEqual(validate_column_constraints("DEFAULT CURRENT_TIMESTAMP"), "DEFAULT CURRENT_TIMESTAMP")

    def test_constraints_rejected(self):
        for constraints in ["CHECK (x > 0)", "DEFAULT 'a'); DROP TABLE t", "REFERENCES users(id)"]:
            with self.assertRaises(ValidationRejected) as ctx:
                validate_column_constraints(constraints)
            self.assertEqual(ctx.exception.reason, RejectionReason.BAD_PATTERN)

    def test_constraint_comment_rejected(self):
        with self.assertRaises(ValidationRejected) as ctx:
            validate_column_constraints("NOT NULL -- hidden")
        self.assertEqual(ctx.exception.reason, RejectionReason.COMMENT_PRESENT)


if __name__ == "__main__":
    unittest.main()
