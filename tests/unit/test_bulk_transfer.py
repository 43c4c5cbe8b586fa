from backend.app.services.bulk_transfer import CopyOptions, UnloadOptions, copy_statement, unload_statement


CREDS = "CREDENTIALS 'aws_access_key_id=a;aws_secret_access_key=b'"


def test_unload_statement_escapes_query_and_adds_manifest() -> None:
    statement = unload_statement(
        "SELECT * FROM \"s\".\"t\" WHERE name = 'x'",
        "bucket",
        "archive/t/",
        CREDS,
        UnloadOptions(allowoverwrite=True, gzip=True, addquotes=True, escape=True, null_as="NULL"),
    )

    assert statement == (
        "UNLOAD ('SELECT * FROM \"s\".\"t\" WHERE name = ''x''')\n"
        "TO 's3://bucket/archive/t/'\n"
        f"{CREDS}\n"
        "MANIFEST ALLOWOVERWRITE GZIP ADDQUOTES ESCAPE NULL AS 'NULL'"
    )


def test_unload_statement_without_options() -> None:
    statement = unload_statement("SELECT 1", "b", "p/", CREDS, UnloadOptions())

    assert statement.endswith("\nMANIFEST")


def test_copy_statement_preserves_identity_values() -> None:
    statement = copy_statement(
        '"s"."t"',
        "bucket",
        "p/manifest",
        "IAM_ROLE 'arn:role'",
        CopyOptions(removequotes=True, escape=True, null_as="it's null"),
    )

    assert statement == (
        'COPY "s"."t"\n'
        "FROM 's3://bucket/p/manifest'\n"
        "IAM_ROLE 'arn:role'\n"
        "MANIFEST EXPLICIT_IDS REMOVEQUOTES ESCAPE NULL AS 'it''s null'"
    )


def test_copy_options_render_in_fixed_order() -> None:
    assert CopyOptions(gzip=True, escape=True).render() == "GZIP ESCAPE"
    assert CopyOptions().render() == ""
