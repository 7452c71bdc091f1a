"""Blob 存储：以不透明引用保存原始内容，边写边算 SHA-256。

Blob 层对命名空间一无所知，只负责 save / open / copy / delete 四个动作：
- 每次写入都生成新的引用（``<owner_id>/<uuid hex><ext>``），相同内容不去重；
- delete 幂等，引用不存在不视为错误；
- 本地与 S3 两种实现，通过 ``build_blob_store`` 按配置选择。
"""

from __future__ import annotations

import hashlib
import mimetypes
import os
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from app.packages.drive.core.config import Settings, get_settings
from app.packages.drive.core.constants import BLOB_CHUNK_SIZE, DEFAULT_MIME_TYPE
from app.packages.drive.core.enums import StorageBackendEnum
from app.packages.drive.core.exceptions import (
    AppException,
    InvalidReferenceError,
    IOFailureError,
    NotFoundError,
    QuotaExceededError,
)
from app.packages.drive.core.logger import logger

_SAFE_EXT = re.compile(r"^\.[A-Za-z0-9]{1,16}$")


@dataclass(frozen=True)
class SavedBlob:
    storage_ref: str
    size: int
    checksum: str


def mime_type_for(filename: Optional[str]) -> str:
    """按扩展名推断媒体类型，未知扩展名统一为 ``application/octet-stream``。"""
    mime, _ = mimetypes.guess_type(filename or "")
    return mime or DEFAULT_MIME_TYPE


def new_storage_ref(owner_id: int, filename: Optional[str] = None) -> str:
    ext = Path(filename or "").suffix.lower()
    if not _SAFE_EXT.match(ext):
        ext = ""
    return f"{owner_id}/{uuid.uuid4().hex}{ext}"


def iter_blob(handle: BinaryIO, chunk_size: int = BLOB_CHUNK_SIZE) -> Iterator[bytes]:
    """把打开的 Blob 句柄转成分块迭代器，读完后关闭，供 StreamingResponse 使用。"""
    try:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()


class _HashingReader:
    """包装输入流：读取时同步累计字节数与摘要，超过上限立即中止。"""

    def __init__(self, stream: BinaryIO, max_bytes: Optional[int]) -> None:
        self._stream = stream
        self._max_bytes = max_bytes
        self._digest = hashlib.sha256()
        self.size = 0

    def read(self, n: int = -1) -> bytes:
        chunk = self._stream.read(n if n and n > 0 else BLOB_CHUNK_SIZE)
        if not chunk:
            return b""
        self.size += len(chunk)
        if self._max_bytes is not None and self.size > self._max_bytes:
            raise QuotaExceededError()
        self._digest.update(chunk)
        return chunk

    @property
    def checksum(self) -> str:
        return self._digest.hexdigest()


class BlobStore:
    """Blob 存储接口。"""

    def save(
        self,
        owner_id: int,
        stream: BinaryIO,
        *,
        filename: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> SavedBlob:
        """流式写入并返回 ``(storage_ref, size, checksum)``；超过 ``max_bytes`` 时抛出配额异常。"""
        raise NotImplementedError

    def open(self, storage_ref: str) -> BinaryIO:
        raise NotImplementedError

    def copy(self, storage_ref: str) -> str:
        raise NotImplementedError

    def delete(self, storage_ref: str) -> None:
        raise NotImplementedError

    def exists(self, storage_ref: str) -> bool:
        raise NotImplementedError

    @staticmethod
    def mime_type(filename: Optional[str]) -> str:
        return mime_type_for(filename)


# ------------------------------------------
# 本地文件系统实现
# ------------------------------------------


class LocalBlobStore(BlobStore):
    def __init__(self, root: str | os.PathLike):
        self.root = Path(root).resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - 极端情况下可能失败
            raise IOFailureError(f"无法创建本地存储根目录: {exc}") from exc

    # 统一的安全路径拼接，防止路径遍历
    def _resolve(self, storage_ref: str) -> Path:
        rel = (storage_ref or "").strip().lstrip("/")
        if not rel:
            raise InvalidReferenceError("存储引用为空")
        candidate = (self.root / rel).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as exc:
            raise InvalidReferenceError("非法存储引用: 越权访问") from exc
        return candidate

    def save(self, owner_id, stream, *, filename=None, max_bytes=None) -> SavedBlob:
        storage_ref = new_storage_ref(owner_id, filename)
        target = self._resolve(storage_ref)
        reader = _HashingReader(stream, max_bytes)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as fh:
                while True:
                    chunk = reader.read(BLOB_CHUNK_SIZE)
                    if not chunk:
                        break
                    fh.write(chunk)
        except AppException:
            self._discard(target)
            raise
        except OSError as exc:
            self._discard(target)
            logger.exception("Local blob write failed", extra={"storage_ref": storage_ref})
            raise IOFailureError(f"写入存储失败: {exc}") from exc
        return SavedBlob(storage_ref=storage_ref, size=reader.size, checksum=reader.checksum)

    def open(self, storage_ref: str) -> BinaryIO:
        target = self._resolve(storage_ref)
        try:
            return open(target, "rb")
        except FileNotFoundError as exc:
            raise NotFoundError("文件内容不存在") from exc
        except OSError as exc:
            raise IOFailureError(f"读取存储失败: {exc}") from exc

    def copy(self, storage_ref: str) -> str:
        source = self._resolve(storage_ref)
        owner_dir = storage_ref.strip().lstrip("/").split("/", 1)[0]
        new_ref = f"{owner_dir}/{uuid.uuid4().hex}{source.suffix}"
        target = self._resolve(new_ref)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except FileNotFoundError as exc:
            raise NotFoundError("源文件内容不存在") from exc
        except OSError as exc:
            self._discard(target)
            raise IOFailureError(f"复制存储内容失败: {exc}") from exc
        return new_ref

    def delete(self, storage_ref: str) -> None:
        target = self._resolve(storage_ref)
        try:
            target.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise IOFailureError(f"删除存储内容失败: {exc}") from exc

    def exists(self, storage_ref: str) -> bool:
        return self._resolve(storage_ref).is_file()

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to remove partial blob %s", path, exc_info=True)


# ------------------------------------------
# S3 实现
# ------------------------------------------


class S3BlobStore(BlobStore):
    """对象存储实现；``client`` 可注入，便于测试替换。"""

    def __init__(
        self,
        *,
        bucket: str,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        prefix: Optional[str] = None,
        client=None,
    ):
        from botocore.exceptions import BotoCoreError, ClientError

        self._errors = (BotoCoreError, ClientError)
        self._client_error = ClientError
        self.bucket = bucket
        self.prefix = (prefix or "").strip("/")
        if client is None:
            import boto3

            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                endpoint_url=endpoint_url,
            )
        self._client = client

    def _key(self, storage_ref: str) -> str:
        rel = (storage_ref or "").strip().lstrip("/")
        if not rel or ".." in rel.split("/"):
            raise InvalidReferenceError("非法存储引用")
        return f"{self.prefix}/{rel}" if self.prefix else rel

    def _is_missing(self, exc: Exception) -> bool:
        if not isinstance(exc, self._client_error):
            return False
        code = str(exc.response.get("Error", {}).get("Code", ""))
        return code in {"404", "NoSuchKey", "NotFound"}

    def save(self, owner_id, stream, *, filename=None, max_bytes=None) -> SavedBlob:
        storage_ref = new_storage_ref(owner_id, filename)
        key = self._key(storage_ref)
        reader = _HashingReader(stream, max_bytes)
        try:
            self._client.upload_fileobj(
                reader,
                self.bucket,
                key,
                ExtraArgs={"ContentType": mime_type_for(filename)},
            )
        except AppException:
            self._discard(key)
            raise
        except self._errors as exc:
            self._discard(key)
            logger.exception("S3 blob write failed", extra={"storage_ref": storage_ref})
            raise IOFailureError(f"写入对象存储失败: {exc}") from exc
        return SavedBlob(storage_ref=storage_ref, size=reader.size, checksum=reader.checksum)

    def open(self, storage_ref: str) -> BinaryIO:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=self._key(storage_ref))
        except self._errors as exc:
            if self._is_missing(exc):
                raise NotFoundError("文件内容不存在") from exc
            raise IOFailureError(f"读取对象存储失败: {exc}") from exc
        return obj["Body"]

    def copy(self, storage_ref: str) -> str:
        owner_dir = storage_ref.strip().lstrip("/").split("/", 1)[0]
        new_ref = f"{owner_dir}/{uuid.uuid4().hex}{Path(storage_ref).suffix}"
        try:
            self._client.copy_object(
                Bucket=self.bucket,
                Key=self._key(new_ref),
                CopySource={"Bucket": self.bucket, "Key": self._key(storage_ref)},
            )
        except self._errors as exc:
            if self._is_missing(exc):
                raise NotFoundError("源文件内容不存在") from exc
            raise IOFailureError(f"复制对象失败: {exc}") from exc
        return new_ref

    def delete(self, storage_ref: str) -> None:
        # DeleteObject 对不存在的 key 同样返回成功
        try:
            self._client.delete_object(Bucket=self.bucket, Key=self._key(storage_ref))
        except self._errors as exc:
            if self._is_missing(exc):
                return
            raise IOFailureError(f"删除对象失败: {exc}") from exc

    def exists(self, storage_ref: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=self._key(storage_ref))
        except self._errors as exc:
            if self._is_missing(exc):
                return False
            raise IOFailureError(f"读取对象元数据失败: {exc}") from exc
        return True

    def _discard(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except self._errors:
            logger.warning("Failed to remove partial object %s", key, exc_info=True)


def build_blob_store(settings: Settings) -> BlobStore:
    backend = (settings.storage_backend or "").upper()
    if backend == StorageBackendEnum.LOCAL.value:
        return LocalBlobStore(settings.storage_directory)
    if backend == StorageBackendEnum.S3.value:
        if not settings.s3_bucket:
            raise AppException("S3 配置不完整：缺少 S3_BUCKET", 500)
        return S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            endpoint_url=settings.s3_endpoint_url,
            prefix=settings.s3_prefix,
        )
    raise AppException(f"不支持的存储类型: {settings.storage_backend}", 500)


_default_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """进程级共享的 Blob 存储实例，首次使用时按配置构建。"""
    global _default_store
    if _default_store is None:
        _default_store = build_blob_store(get_settings())
    return _default_store
