"""个人网盘业务包：文件树、Blob 存储、配额、回收站与 WebDAV 接入。"""

from app.packages.types import AppPackage

from .api.v1 import api_router
from .api.webdav.router import router as webdav_router
from .core.config import get_settings
from .core.exceptions import generic_exception_handler, http_exception_handler
from .core.logger import logger, setup_logging
from .core.responses import create_response
from .db.init_db import init_db
from .services.trash_service import sweep_trash_on_startup

package = AppPackage(
    name="drive",
    api_router=api_router,
    get_settings=get_settings,
    setup_logging=setup_logging,
    logger=logger,
    init_db=init_db,
    create_response=create_response,
    http_exception_handler=http_exception_handler,
    generic_exception_handler=generic_exception_handler,
    extra_routers=(webdav_router,),
    on_startup=sweep_trash_on_startup,
)

__all__ = ["package", "api_router", "webdav_router", "get_settings"]
