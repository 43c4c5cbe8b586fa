from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    api_title: str = "Table Vault API"
    api_version: str = "0.1.0"
    database_url: str = "sqlite:///./table_vault.db"
    warehouse_url: str = ""
    warehouse_connect_timeout: int = 30
    auth_enabled: bool = False
    auth_token: str = ""
    object_store_mode: str = "local"
    object_store_local_dir: str = ".data/objects"
    s3_endpoint: str = ""
    s3_region: str = "us-east-1"
    s3_secure: bool = True
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    redshift_iam_role: str = ""
    skip_permission_check: bool = False
    smtp_host: str = ""
    smtp_port: int = 25
    mail_from: str = "table-vault@localhost"
    job_failure_cc: tuple[str, ...] = ()
    job_failure_bcc: tuple[str, ...] = ()
    worker_poll_interval_ms: int = 1000
    job_max_retries: int = 3

    @staticmethod
    def from_env() -> "Settings":
        def b(name: str, default: bool = False) -> bool:
            value = os.getenv(name)
            if value is None:
                return default
            return value.strip().lower() in {"1", "true", "yes", "on"}

        def i(name: str, default: int) -> int:
            value = os.getenv(name)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        def addresses(name: str) -> tuple[str, ...]:
            value = os.getenv(name, "")
            return tuple(part.strip() for part in value.split(",") if part.strip())

        return Settings(
            api_title=os.getenv("API_TITLE", "Table Vault API"),
            api_version=os.getenv("API_VERSION", "0.1.0"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./table_vault.db"),
            warehouse_url=os.getenv("WAREHOUSE_URL", ""),
            warehouse_connect_timeout=i("WAREHOUSE_CONNECT_TIMEOUT", 30),
            auth_enabled=b("AUTH_ENABLED", False),
            auth_token=os.getenv("AUTH_TOKEN", ""),
            object_store_mode=os.getenv("OBJECT_STORE_MODE", "local"),
            object_store_local_dir=os.getenv("OBJECT_STORE_LOCAL_DIR", ".data/objects"),
            s3_endpoint=os.getenv("S3_ENDPOINT", ""),
            s3_region=os.getenv("S3_REGION", "us-east-1"),
            s3_secure=b("S3_SECURE", True),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", ""),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", ""),
            redshift_iam_role=os.getenv("REDSHIFT_IAM_ROLE", ""),
            skip_permission_check=b("SKIP_PERMISSION_CHECK", False),
            smtp_host=os.getenv("SMTP_HOST", ""),
            smtp_port=i("SMTP_PORT", 25),
            mail_from=os.getenv("MAIL_FROM", "table-vault@localhost"),
            job_failure_cc=addresses("JOB_FAILURE_CC"),
            job_failure_bcc=addresses("JOB_FAILURE_BCC"),
            worker_poll_interval_ms=i("WORKER_POLL_INTERVAL_MS", 1000),
            job_max_retries=i("JOB_MAX_RETRIES", 3),
        )


settings = Settings.from_env()
