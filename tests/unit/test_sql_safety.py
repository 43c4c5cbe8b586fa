import pytest

from backend.app.errors import ValidationError
from backend.app.services.sql_safety import (
    credentials_clause,
    escape_string,
    full_table_name,
    quote_ident,
    quote_literal,
    split_statements,
)


def test_escape_string_doubles_single_quotes() -> None:
    assert escape_string("it's") == "it''s"
    assert quote_literal("a'b") == "'a''b'"


def test_escape_string_rejects_nul() -> None:
    with pytest.raises(ValidationError):
        escape_string("bad\x00value")


def test_quote_ident_doubles_embedded_quotes() -> None:
    assert quote_ident('we"ird') == '"we""ird"'
    assert full_table_name("s", "t") == '"s"."t"'
    assert full_table_name('s"; DROP TABLE x; --', "t") == '"s""; DROP TABLE x; --"."t"'


def test_credentials_prefer_explicit_keys_over_role() -> None:
    clause = credentials_clause("AKIAUSER", "secret", iam_role="arn:role", default_access_key_id="AKIADEFAULT")

    assert clause == "CREDENTIALS 'aws_access_key_id=AKIAUSER;aws_secret_access_key=secret'"


def test_credentials_use_role_when_keys_are_the_default() -> None:
    clause = credentials_clause("AKIADEFAULT", "secret", iam_role="arn:aws:iam::1:role/r", default_access_key_id="AKIADEFAULT")

    assert clause == "IAM_ROLE 'arn:aws:iam::1:role/r'"


def test_credentials_fall_back_to_default_keys_without_role() -> None:
    clause = credentials_clause("AKIADEFAULT", "s'ecret", iam_role="", default_access_key_id="AKIADEFAULT")

    assert clause == "CREDENTIALS 'aws_access_key_id=AKIADEFAULT;aws_secret_access_key=s''ecret'"


def test_split_statements_ignores_semicolons_in_quotes_and_comments() -> None:
    script = (
        'CREATE TABLE "s"."t;x"(\n\t"id" integer NULL\n)\n;\n'
        "-- trailing; comment\n"
        "COMMENT ON TABLE \"s\".\"t;x\" IS 'a; b''c';\n"
        ";\n"
    )

    statements = split_statements(script)

    assert statements == [
        'CREATE TABLE "s"."t;x"(\n\t"id" integer NULL\n)',
        "COMMENT ON TABLE \"s\".\"t;x\" IS 'a; b''c'",
    ]


def test_split_statements_rejects_unterminated_literal() -> None:
    with pytest.raises(ValueError):
        split_statements("COMMENT ON TABLE \"s\".\"t\" IS 'oops;")
