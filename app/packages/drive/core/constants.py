"""常量定义：集中维护状态码、默认账号与业务常量。"""

HTTP_STATUS_OK = 200
HTTP_STATUS_CREATED = 201
HTTP_STATUS_NO_CONTENT = 204
HTTP_STATUS_MULTI_STATUS = 207
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_UNAUTHORIZED = 401
HTTP_STATUS_FORBIDDEN = 403
HTTP_STATUS_NOT_FOUND = 404
HTTP_STATUS_METHOD_NOT_ALLOWED = 405
HTTP_STATUS_CONFLICT = 409
HTTP_STATUS_PRECONDITION_FAILED = 412
HTTP_STATUS_INTERNAL_SERVER_ERROR = 500
HTTP_STATUS_INSUFFICIENT_STORAGE = 507

ACCESS_TOKEN_TYPE = "bearer"

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"
DEFAULT_ADMIN_EMAIL = "admin@stratus.local"
DEFAULT_ADMIN_DISPLAY_NAME = "Administrator"

# 10 GiB / 100 GiB
DEFAULT_USER_QUOTA = 10 * 1024 * 1024 * 1024
DEFAULT_ADMIN_QUOTA = 100 * 1024 * 1024 * 1024

DEFAULT_MIME_TYPE = "application/octet-stream"
BLOB_CHUNK_SIZE = 1024 * 1024

# 文件名中禁止出现的字符
INVALID_NAME_CHARS = frozenset('/\\:*?"<>|')

WEBDAV_REALM = "WebDAV"
WEBDAV_LOCK_TIMEOUT = "Second-3600"
WEBDAV_ALLOWED_METHODS = (
    "OPTIONS, GET, HEAD, PUT, DELETE, PROPFIND, MKCOL, MOVE, COPY, LOCK, UNLOCK"
)
