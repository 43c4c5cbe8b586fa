from __future__ import annotations

from dataclasses import dataclass

from backend.app.services.sql_safety import escape_string, quote_literal


@dataclass(frozen=True)
class UnloadOptions:
    allowoverwrite: bool = False
    gzip: bool = False
    addquotes: bool = False
    escape: bool = False
    null_as: str | None = None

    def render(self) -> str:
        parts: list[str] = []
        if self.allowoverwrite:
            parts.append("ALLOWOVERWRITE")
        if self.gzip:
            parts.append("GZIP")
        if self.addquotes:
            parts.append("ADDQUOTES")
        if self.escape:
            parts.append("ESCAPE")
        if self.null_as is not None:
            parts.append(f"NULL AS {quote_literal(self.null_as)}")
        return " ".join(parts)


@dataclass(frozen=True)
class CopyOptions:
    gzip: bool = False
    removequotes: bool = False
    escape: bool = False
    null_as: str | None = None

    def render(self) -> str:
        parts: list[str] = []
        if self.gzip:
            parts.append("GZIP")
        if self.removequotes:
            parts.append("REMOVEQUOTES")
        if self.escape:
            parts.append("ESCAPE")
        if self.null_as is not None:
            parts.append(f"NULL AS {quote_literal(self.null_as)}")
        return " ".join(parts)


def s3_url(bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key}"


def unload_statement(
    query: str,
    bucket: str,
    prefix: str,
    credentials: str,
    options: UnloadOptions,
) -> str:
    """UNLOAD ``query`` to ``s3://bucket/prefix`` writing a manifest.

    ``credentials`` must come from ``sql_safety.credentials_clause``.
    """
    destination = escape_string(s3_url(bucket, prefix))
    statement = (
        f"UNLOAD ('{escape_string(query)}')\n"
        f"TO '{destination}'\n"
        f"{credentials}\n"
        "MANIFEST"
    )
    rendered = options.render()
    return f"{statement} {rendered}" if rendered else statement


def copy_statement(
    full_table_name: str,
    bucket: str,
    manifest_key: str,
    credentials: str,
    options: CopyOptions,
) -> str:
    # EXPLICIT_IDS keeps archived identity values instead of generating new ones
    source = escape_string(s3_url(bucket, manifest_key))
    statement = (
        f"COPY {full_table_name}\n"
        f"FROM '{source}'\n"
        f"{credentials}\n"
        "MANIFEST EXPLICIT_IDS"
    )
    rendered = options.render()
    return f"{statement} {rendered}" if rendered else statement
