from __future__ import annotations

import json
import time
from typing import Any

import httpx
import typer


app = typer.Typer(help="Table Vault CLI: archive warehouse tables to S3 and restore them")
archives_app = typer.Typer(help="Archive record commands")
jobs_app = typer.Typer(help="Job commands")
app.add_typer(archives_app, name="archives")
app.add_typer(jobs_app, name="jobs")


EXIT_SUCCESS = 0
EXIT_RUNTIME_ERROR = 1
EXIT_VALIDATION = 2
EXIT_AUTH = 3
EXIT_NOT_FOUND = 4
EXIT_DEP_UNAVAILABLE = 6

TERMINAL_JOB_STATUSES = {"completed", "failed"}


class ApiError(Exception):
    def __init__(self, code: str, message: str, status_code: int) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class DependencyUnavailable(Exception):
    pass


class ApiClient:
    def __init__(
        self,
        api_url: str,
        auth_token: str | None,
        timeout: float,
        verbose: bool = False,
        requested_by: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.verbose = verbose
        self.requested_by = requested_by
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def call(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers: dict[str, str] = {"content-type": "application/json"}
        if self.auth_token:
            headers["authorization"] = f"Bearer {self.auth_token}"
        if self.requested_by:
            headers["x-requested-by"] = self.requested_by
        url = f"{self.api_url}{path}"
        try:
            response = self.client.request(method, url, json=payload, params=params, headers=headers)
        except httpx.TransportError as exc:
            raise DependencyUnavailable(f"Dependency unavailable: {exc}") from exc

        body = response.json()
        if self.verbose:
            request_id = body.get("request_id")
            if request_id:
                typer.echo(f"request_id={request_id}", err=True)

        if response.status_code >= 400:
            error = body.get("error") or {}
            message = error.get("message", "request failed")
            code = error.get("code", "INTERNAL_ERROR")
            raise ApiError(code=code, message=message, status_code=response.status_code)

        return body["data"]


def _print(payload: Any, output: str) -> None:
    if output == "json":
        typer.echo(json.dumps(payload, indent=2, default=str))
    else:
        if isinstance(payload, dict):
            for key, value in payload.items():
                typer.echo(f"{key}: {value}")
        elif isinstance(payload, list):
            for item in payload:
                typer.echo(str(item))
        else:
            typer.echo(str(payload))


def _map_error_to_exit(err: Exception) -> int:
    if isinstance(err, ApiError):
        if err.code in {"VALIDATION_ERROR", "ARTIFACT_MISSING", "ARTIFACT_CORRUPT"}:
            return EXIT_VALIDATION
        if err.code in {"AUTH_REQUIRED", "AUTH_FORBIDDEN"}:
            return EXIT_AUTH
        if err.code == "NOT_FOUND":
            return EXIT_NOT_FOUND
        if err.code == "TRANSPORT_ERROR":
            return EXIT_DEP_UNAVAILABLE
        return EXIT_RUNTIME_ERROR
    if isinstance(err, DependencyUnavailable):
        return EXIT_DEP_UNAVAILABLE
    return EXIT_RUNTIME_ERROR


def _wait_for_job(client: ApiClient, job_id: int, poll_interval: float, verbose: bool) -> dict[str, Any]:
    while True:
        job = client.call("GET", f"/api/v1/jobs/{job_id}")
        if verbose:
            typer.echo(f"status={job['status']}", err=True)
        if job["status"] in TERMINAL_JOB_STATUSES:
            return job
        time.sleep(poll_interval)


def _submit(
    client: ApiClient,
    path: str,
    body: dict[str, Any],
    wait: bool,
    poll_interval: float,
    output: str,
    verbose: bool,
) -> None:
    created = client.call("POST", path, body)
    if not wait:
        _print(created, output)
        raise typer.Exit(code=EXIT_SUCCESS)

    job = _wait_for_job(client, created["job_id"], poll_interval, verbose)
    _print(job, output)
    raise typer.Exit(code=EXIT_SUCCESS if job["status"] == "completed" else EXIT_RUNTIME_ERROR)


@app.command("archive")
def archive(
    schema_name: str = typer.Option(..., "--schema"),
    table_name: str = typer.Option(..., "--table"),
    bucket: str = typer.Option(..., "--bucket"),
    prefix: str = typer.Option(..., "--prefix"),
    access_key_id: str = typer.Option(..., "--access-key-id", envvar="AWS_ACCESS_KEY_ID"),
    secret_access_key: str = typer.Option(..., "--secret-access-key", envvar="AWS_SECRET_ACCESS_KEY"),
    skip_drop: bool = typer.Option(False, "--skip-drop"),
    allowoverwrite: bool = typer.Option(False, "--allowoverwrite"),
    gzip: bool = typer.Option(False, "--gzip"),
    addquotes: bool = typer.Option(False, "--addquotes"),
    escape: bool = typer.Option(False, "--escape"),
    null_as: str | None = typer.Option(None, "--null-as"),
    email: str | None = typer.Option(None, "--email"),
    wait: bool = typer.Option(False, "--wait"),
    poll_interval: float = typer.Option(1.0, "--poll-interval"),
    api_url: str = typer.Option("http://localhost:8000", "--api-url"),
    auth_token: str | None = typer.Option(None, "--auth-token"),
    requested_by: str | None = typer.Option(None, "--requested-by"),
    output: str = typer.Option("text", "--output"),
    timeout: float = typer.Option(10.0, "--timeout"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    client = ApiClient(api_url, auth_token, timeout, verbose=verbose, requested_by=requested_by)
    try:
        body = {
            "db": {"schema_name": schema_name, "table_name": table_name},
            "s3": {
                "bucket": bucket,
                "prefix": prefix,
                "access_key_id": access_key_id,
                "secret_access_key": secret_access_key,
            },
            "skip_drop": skip_drop,
            "unload": {
                "allowoverwrite": allowoverwrite,
                "gzip": gzip,
                "addquotes": addquotes,
                "escape": escape,
                "null_as": null_as,
            },
            "email": email,
        }
        _submit(client, "/api/v1/archives", body, wait, poll_interval, output, verbose)
    except typer.Exit:
        raise
    except Exception as err:  # noqa: BLE001
        typer.echo(f"error: {err}", err=True)
        raise typer.Exit(code=_map_error_to_exit(err)) from err
    finally:
        client.close()


@app.command("restore")
def restore(
    schema_name: str = typer.Option(..., "--schema"),
    table_name: str = typer.Option(..., "--table"),
    bucket: str = typer.Option(..., "--bucket"),
    prefix: str = typer.Option(..., "--prefix"),
    access_key_id: str = typer.Option(..., "--access-key-id", envvar="AWS_ACCESS_KEY_ID"),
    secret_access_key: str = typer.Option(..., "--secret-access-key", envvar="AWS_SECRET_ACCESS_KEY"),
    gzip: bool = typer.Option(False, "--gzip"),
    removequotes: bool = typer.Option(False, "--removequotes"),
    escape: bool = typer.Option(False, "--escape"),
    null_as: str | None = typer.Option(None, "--null-as"),
    email: str | None = typer.Option(None, "--email"),
    wait: bool = typer.Option(False, "--wait"),
    poll_interval: float = typer.Option(1.0, "--poll-interval"),
    api_url: str = typer.Option("http://localhost:8000", "--api-url"),
    auth_token: str | None = typer.Option(None, "--auth-token"),
    requested_by: str | None = typer.Option(None, "--requested-by"),
    output: str = typer.Option("text", "--output"),
    timeout: float = typer.Option(10.0, "--timeout"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    client = ApiClient(api_url, auth_token, timeout, verbose=verbose, requested_by=requested_by)
    try:
        body = {
            "db": {"schema_name": schema_name, "table_name": table_name},
            "s3": {
                "bucket": bucket,
                "prefix": prefix,
                "access_key_id": access_key_id,
                "secret_access_key": secret_access_key,
            },
            "copy": {"gzip": gzip, "removequotes": removequotes, "escape": escape, "null_as": null_as},
            "email": email,
        }
        _submit(client, "/api/v1/restores", body, wait, poll_interval, output, verbose)
    except typer.Exit:
        raise
    except Exception as err:  # noqa: BLE001
        typer.echo(f"error: {err}", err=True)
        raise typer.Exit(code=_map_error_to_exit(err)) from err
    finally:
        client.close()


@archives_app.command("list")
def archives_list(
    schema_name: str | None = typer.Option(None, "--schema"),
    api_url: str = typer.Option("http://localhost:8000", "--api-url"),
    auth_token: str | None = typer.Option(None, "--auth-token"),
    output: str = typer.Option("text", "--output"),
    timeout: float = typer.Option(10.0, "--timeout"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    client = ApiClient(api_url, auth_token, timeout, verbose=verbose)
    try:
        params = {"schema_name": schema_name} if schema_name else None
        data = client.call("GET", "/api/v1/archives", params=params)
        if output == "json":
            _print(data, output)
        else:
            for item in data["items"]:
                typer.echo(
                    f"{item['schema_name']}.{item['table_name']} "
                    f"s3://{item['archive_bucket']}/{item['archive_prefix']} {item['size_in_mb']}MB"
                )
    except Exception as err:  # noqa: BLE001
        typer.echo(f"error: {err}", err=True)
        raise typer.Exit(code=_map_error_to_exit(err)) from err
    finally:
        client.close()


@archives_app.command("get")
def archives_get(
    schema_name: str,
    table_name: str,
    api_url: str = typer.Option("http://localhost:8000", "--api-url"),
    auth_token: str | None = typer.Option(None, "--auth-token"),
    output: str = typer.Option("text", "--output"),
    timeout: float = typer.Option(10.0, "--timeout"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    client = ApiClient(api_url, auth_token, timeout, verbose=verbose)
    try:
        data = client.call("GET", f"/api/v1/archives/{schema_name}/{table_name}")
        _print(data, output)
    except Exception as err:  # noqa: BLE001
        typer.echo(f"error: {err}", err=True)
        raise typer.Exit(code=_map_error_to_exit(err)) from err
    finally:
        client.close()


@jobs_app.command("get")
def jobs_get(
    job_id: int,
    api_url: str = typer.Option("http://localhost:8000", "--api-url"),
    auth_token: str | None = typer.Option(None, "--auth-token"),
    output: str = typer.Option("text", "--output"),
    timeout: float = typer.Option(10.0, "--timeout"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    client = ApiClient(api_url, auth_token, timeout, verbose=verbose)
    try:
        data = client.call("GET", f"/api/v1/jobs/{job_id}")
        _print(data, output)
    except Exception as err:  # noqa: BLE001
        typer.echo(f"error: {err}", err=True)
        raise typer.Exit(code=_map_error_to_exit(err)) from err
    finally:
        client.close()


def run() -> None:
    app()


if __name__ == "__main__":
    run()
