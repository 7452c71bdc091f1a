"""异常处理模块：定义网盘领域异常，并按协议渲染错误响应。

JSON 接口返回统一的 ``{msg, data, code}`` 结构；WebDAV 路径下只返回裸状态码，
不带响应体（客户端只认状态码）。
"""

from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse, Response

from app.packages.drive.core.config import get_settings
from app.packages.drive.core.logger import logger
from app.packages.drive.core.security import consume_refreshed_token


class AppException(HTTPException):
    """携带统一响应结构的业务异常，方便在全局处理中转换响应体。"""

    # WebDAV 适配层使用的状态码；None 表示与 JSON 状态码一致
    webdav_status: Optional[int] = None

    def __init__(
        self,
        msg: str,
        code: int = status.HTTP_400_BAD_REQUEST,
        data=None,
        headers: Optional[dict] = None,
    ) -> None:
        super().__init__(status_code=code, detail=msg, headers=headers)
        self.data = data

    @property
    def dav_status(self) -> int:
        return self.webdav_status or self.status_code


class NotFoundError(AppException):
    def __init__(self, msg: str = "资源不存在", data=None) -> None:
        super().__init__(msg, status.HTTP_404_NOT_FOUND, data)


class ConflictError(AppException):
    """同级重名、MKCOL 目标已存在、恢复时名称被占用等。"""

    def __init__(self, msg: str = "同一目录下已存在同名项", data=None) -> None:
        super().__init__(msg, status.HTTP_409_CONFLICT, data)


class QuotaExceededError(AppException):
    webdav_status = status.HTTP_507_INSUFFICIENT_STORAGE

    def __init__(self, msg: str = "存储空间不足", data=None) -> None:
        super().__init__(msg, status.HTTP_403_FORBIDDEN, data)


class InvalidNameError(AppException):
    def __init__(self, msg: str = "名称不合法", data=None) -> None:
        super().__init__(msg, status.HTTP_400_BAD_REQUEST, data)


class CycleError(AppException):
    """目录不能移动到自身或其子目录下。"""

    webdav_status = status.HTTP_403_FORBIDDEN

    def __init__(self, msg: str = "不能将目录移动到其自身或子目录中", data=None) -> None:
        super().__init__(msg, status.HTTP_400_BAD_REQUEST, data)


class InvalidReferenceError(AppException):
    def __init__(self, msg: str = "无效的资源标识或路径", data=None) -> None:
        super().__init__(msg, status.HTTP_400_BAD_REQUEST, data)


class IOFailureError(AppException):
    def __init__(self, msg: str = "存储读写失败", data=None) -> None:
        super().__init__(msg, status.HTTP_500_INTERNAL_SERVER_ERROR, data)


class ForbiddenError(AppException):
    def __init__(self, msg: str = "不允许执行该操作", data=None) -> None:
        super().__init__(msg, status.HTTP_403_FORBIDDEN, data)


class PreconditionFailedError(AppException):
    """WebDAV ``Overwrite: F`` 且目标已存在。"""

    def __init__(self, msg: str = "目标已存在且不允许覆盖", data=None) -> None:
        super().__init__(msg, status.HTTP_412_PRECONDITION_FAILED, data)


class PayloadTooLargeError(AppException):
    """单次上传超过 ``MAX_UPLOAD_SIZE``。"""

    def __init__(self, msg: str = "文件过大", data=None) -> None:
        super().__init__(msg, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, data)


def is_webdav_request(request: Request) -> bool:
    mount = get_settings().webdav_mount
    path = request.url.path
    return path == mount or path.startswith(mount + "/")


async def http_exception_handler(request: Request, exc: HTTPException) -> Response:  # pragma: no cover - framework glue
    """将 ``HTTPException`` 转换为 JSON 统一结构或 WebDAV 裸状态码。"""
    if is_webdav_request(request):
        code = exc.dav_status if isinstance(exc, AppException) else exc.status_code
        return Response(status_code=code, headers=exc.headers)

    payload = {"msg": exc.detail, "data": getattr(exc, "data", None), "code": exc.status_code}
    token = consume_refreshed_token()
    if token:
        payload["meta"] = {"access_token": token}
    return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)


async def generic_exception_handler(request: Request, exc: Exception) -> Response:  # pragma: no cover - framework glue
    """兜底处理：记录堆栈并返回 500。"""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    if is_webdav_request(request):
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    payload = {
        "msg": "服务器内部错误",
        "data": None,
        "code": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
