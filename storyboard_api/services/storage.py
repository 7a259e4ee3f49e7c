"""
생성 이미지 저장소 (로컬 디스크 / S3 호환 R2)
"""
import os
import uuid
from typing import Optional

import boto3
from botocore.config import Config

from storyboard_api.core.config import settings
from storyboard_api.core.paths import get_upload_dir

_EXT_BY_CONTENT_TYPE = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


def _extension(content_type: Optional[str], key_hint: Optional[str]) -> str:
    if key_hint and "." in key_hint:
        return "." + key_hint.split(".")[-1]
    return _EXT_BY_CONTENT_TYPE.get((content_type or "").lower(), ".png")


class Storage:
    def save_bytes(
        self,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        key_hint: Optional[str] = None,
        prefix: str = "storyboards",
    ) -> str:
        """바이트를 저장하고 공개 URL을 반환"""
        raise NotImplementedError


class LocalStorage(Storage):
    def __init__(self, base_dir: str, public_base: str = "/static") -> None:
        self.base_dir = base_dir
        self.public_base = public_base.rstrip("/")
        os.makedirs(self.base_dir, exist_ok=True)

    def save_bytes(
        self,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        key_hint: Optional[str] = None,
        prefix: str = "storyboards",
    ) -> str:
        prefix = prefix.strip("/")
        directory = os.path.join(self.base_dir, *prefix.split("/")) if prefix else self.base_dir
        os.makedirs(directory, exist_ok=True)
        name = f"{uuid.uuid4()}{_extension(content_type, key_hint)}"
        with open(os.path.join(directory, name), "wb") as f:
            f.write(data)
        return f"{self.public_base}/{prefix}/{name}" if prefix else f"{self.public_base}/{name}"


class S3Storage(Storage):
    def __init__(
        self,
        *,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None,
    ) -> None:
        addressing_style = (os.getenv("S3_ADDRESSING_STYLE") or os.getenv("R2_ADDRESSING_STYLE") or "path").lower()
        # R2는 SigV4 필요. 주소 스타일은 env로 선택(path/virtual)
        cfg = Config(signature_version="s3v4", s3={"addressing_style": addressing_style})
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=cfg,
        )
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def save_bytes(
        self,
        data: bytes,
        *,
        content_type: Optional[str] = None,
        key_hint: Optional[str] = None,
        prefix: str = "storyboards",
    ) -> str:
        key = f"{prefix.strip('/')}/{uuid.uuid4()}{_extension(content_type, key_hint)}"
        extra_args = {}
        if content_type:
            extra_args["ContentType"] = content_type
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra_args)
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        # 기본 S3 URL (path-style: endpoint/bucket/key)
        endpoint = self.client.meta.endpoint_url.rstrip("/")
        return f"{endpoint}/{self.bucket}/{key}"


def get_storage() -> Storage:
    backend = (settings.STORAGE_BACKEND or "local").lower()
    if backend == "s3":
        endpoint = os.getenv("S3_ENDPOINT_URL") or os.getenv("R2_ENDPOINT_URL")
        access_key = os.getenv("S3_ACCESS_KEY_ID") or os.getenv("R2_ACCESS_KEY_ID")
        secret_key = os.getenv("S3_SECRET_ACCESS_KEY") or os.getenv("R2_SECRET_ACCESS_KEY")
        bucket = os.getenv("S3_BUCKET") or os.getenv("R2_BUCKET")
        region = os.getenv("S3_REGION") or os.getenv("R2_REGION")
        public_base = os.getenv("S3_PUBLIC_BASE_URL") or os.getenv("R2_PUBLIC_BASE_URL")
        if not (endpoint and access_key and secret_key and bucket):
            raise RuntimeError("S3/R2 storage is not fully configured")
        return S3Storage(
            endpoint_url=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            bucket=bucket,
            region=region,
            public_base_url=public_base,
        )
    return LocalStorage(base_dir=get_upload_dir(), public_base="/static")
