from __future__ import annotations

import os
from collections.abc import Iterator

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from backend.app.config import Settings
from backend.app.errors import TransportError


class ObjectStore:
    def exists(self, bucket: str, key: str) -> bool:
        raise NotImplementedError

    def get(self, bucket: str, key: str) -> bytes:
        raise NotImplementedError

    def put(self, bucket: str, key: str, body: bytes) -> None:
        raise NotImplementedError

    def delete(self, bucket: str, key: str) -> None:
        raise NotImplementedError

    def list(self, bucket: str, prefix: str) -> Iterator[str]:
        raise NotImplementedError

    def get_text(self, bucket: str, key: str) -> str:
        return self.get(bucket, key).decode("utf-8")

    def put_text(self, bucket: str, key: str, text: str) -> None:
        self.put(bucket, key, text.encode("utf-8"))

    def delete_prefix(self, bucket: str, prefix: str, keep_prefix: str | None = None) -> int:
        """Delete every key under ``prefix`` except those under ``keep_prefix``."""
        deleted = 0
        for key in list(self.list(bucket, prefix)):
            if keep_prefix and key.startswith(keep_prefix):
                continue
            self.delete(bucket, key)
            deleted += 1
        return deleted


class LocalObjectStore(ObjectStore):
    """Directory-backed store: ``<base_dir>/<bucket>/<key>``."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = os.path.abspath(base_dir)
        os.makedirs(self.base_dir, exist_ok=True)

    def _path_for(self, bucket: str, key: str) -> str:
        root = os.path.join(self.base_dir, bucket)
        path = os.path.abspath(os.path.join(root, key))
        if not path.startswith(root + os.sep):
            raise TransportError("Object key escapes the bucket", {"bucket": bucket, "key": key})
        return path

    def exists(self, bucket: str, key: str) -> bool:
        return os.path.isfile(self._path_for(bucket, key))

    def get(self, bucket: str, key: str) -> bytes:
        path = self._path_for(bucket, key)
        try:
            with open(path, "rb") as handle:
                return handle.read()
        except OSError as exc:
            raise TransportError(f"Failed to read {bucket}/{key}: {exc}") from exc

    def put(self, bucket: str, key: str, body: bytes) -> None:
        path = self._path_for(bucket, key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(body)
        except OSError as exc:
            raise TransportError(f"Failed to write {bucket}/{key}: {exc}") from exc

    def delete(self, bucket: str, key: str) -> None:
        path = self._path_for(bucket, key)
        if os.path.exists(path):
            os.remove(path)

    def list(self, bucket: str, prefix: str) -> Iterator[str]:
        root = os.path.join(self.base_dir, bucket)
        if not os.path.isdir(root):
            return
        keys: list[str] = []
        for folder, _dirs, files in os.walk(root):
            for name in files:
                key = os.path.relpath(os.path.join(folder, name), root).replace(os.sep, "/")
                if key.startswith(prefix):
                    keys.append(key)
        yield from sorted(keys)


class S3ObjectStore(ObjectStore):
    def __init__(self, settings: Settings) -> None:
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint or None,
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
            region_name=settings.s3_region,
            use_ssl=settings.s3_secure,
        )

    def exists(self, bucket: str, key: str) -> bool:
        try:
            self.client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise TransportError(f"Failed to stat {bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransportError(f"Failed to stat {bucket}/{key}: {exc}") from exc

    def get(self, bucket: str, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise TransportError(f"Failed to read {bucket}/{key}: {exc}") from exc

    def put(self, bucket: str, key: str, body: bytes) -> None:
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=body)
        except (ClientError, BotoCoreError) as exc:
            raise TransportError(f"Failed to write {bucket}/{key}: {exc}") from exc

    def delete(self, bucket: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise TransportError(f"Failed to delete {bucket}/{key}: {exc}") from exc

    def list(self, bucket: str, prefix: str) -> Iterator[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    yield obj["Key"]
        except (ClientError, BotoCoreError) as exc:
            raise TransportError(f"Failed to list {bucket}/{prefix}: {exc}") from exc

    def delete_prefix(self, bucket: str, prefix: str, keep_prefix: str | None = None) -> int:
        keys = [key for key in self.list(bucket, prefix) if not (keep_prefix and key.startswith(keep_prefix))]
        deleted = 0
        # delete_objects accepts at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            batch = keys[start : start + 1000]
            try:
                self.client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                raise TransportError(f"Failed to delete under {bucket}/{prefix}: {exc}") from exc
            deleted += len(batch)
        return deleted


def build_object_store(settings: Settings) -> ObjectStore:
    if settings.object_store_mode.lower() == "s3":
        return S3ObjectStore(settings)
    return LocalObjectStore(settings.object_store_local_dir)
