"""枚举定义：约束节点类型、存储后端与活动记录类型的可选值。"""

from enum import Enum


class NodeKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class StorageBackendEnum(str, Enum):
    LOCAL = "LOCAL"
    S3 = "S3"


class ActivityTypeEnum(str, Enum):
    """活动记录的业务类型。"""

    FILE_CREATED = "file_created"
    FILE_UPDATED = "file_updated"
    FILE_DELETED = "file_deleted"
    FILE_MOVED = "file_moved"
    FILE_COPIED = "file_copied"
    FILE_DOWNLOADED = "file_downloaded"
    FILE_TRASHED = "file_trashed"
    FILE_RESTORED = "file_restored"
    FOLDER_CREATED = "folder_created"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
