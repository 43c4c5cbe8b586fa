"""Escaping and quoting for generated warehouse SQL.

Every value interpolated into UNLOAD/COPY/COMMENT statements goes through
``escape_string`` and every identifier through ``quote_ident``. Nothing else
in the code base builds SQL literals by hand.
"""

from __future__ import annotations

from backend.app.errors import ValidationError


def escape_string(value: str) -> str:
    if "\x00" in value:
        raise ValidationError("SQL values must not contain NUL characters")
    return value.replace("'", "''")


def quote_literal(value: str) -> str:
    return f"'{escape_string(value)}'"


def quote_ident(name: str) -> str:
    if "\x00" in name:
        raise ValidationError("SQL identifiers must not contain NUL characters")
    return '"' + name.replace('"', '""') + '"'


def full_table_name(schema_name: str, table_name: str) -> str:
    return f"{quote_ident(schema_name)}.{quote_ident(table_name)}"


def credentials_clause(
    access_key_id: str,
    secret_access_key: str,
    iam_role: str | None = None,
    default_access_key_id: str | None = None,
) -> str:
    # explicit keys win unless they are just the environment's own keys
    if access_key_id and access_key_id != (default_access_key_id or ""):
        return _key_pair_clause(access_key_id, secret_access_key)
    if iam_role:
        return f"IAM_ROLE {quote_literal(iam_role)}"
    return _key_pair_clause(access_key_id, secret_access_key)


def _key_pair_clause(access_key_id: str, secret_access_key: str) -> str:
    return (
        "CREDENTIALS 'aws_access_key_id="
        f"{escape_string(access_key_id)};aws_secret_access_key={escape_string(secret_access_key)}'"
    )


def split_statements(script: str) -> list[str]:
    """Split a SQL script on top-level semicolons.

    Quoted literals (``'...'`` with ``''`` escapes), quoted identifiers and
    ``--`` line comments are skipped over, so a semicolon inside a table
    comment does not end the statement. Returned statements are stripped and
    carry no trailing delimiter; empty statements are dropped.
    """
    statements: list[str] = []
    current: list[str] = []
    i = 0
    length = len(script)
    while i < length:
        char = script[i]
        if char in ("'", '"'):
            end = _end_of_quoted(script, i, char)
            current.append(script[i:end])
            i = end
            continue
        if char == "-" and script.startswith("--", i):
            newline = script.find("\n", i)
            i = length if newline == -1 else newline
            continue
        if char == ";":
            _flush(current, statements)
            current = []
            i += 1
            continue
        current.append(char)
        i += 1
    _flush(current, statements)
    return statements


def _end_of_quoted(script: str, start: int, quote: str) -> int:
    i = start + 1
    while i < len(script):
        if script[i] == quote:
            if i + 1 < len(script) and script[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    raise ValueError(f"Unterminated quoted section at offset {start}")


def _flush(chunks: list[str], statements: list[str]) -> None:
    statement = "".join(chunks).strip()
    if statement:
        statements.append(statement)
