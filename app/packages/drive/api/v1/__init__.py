"""API v1 汇总路由：统一挂载所有版本化的子路由。"""

from fastapi import APIRouter

from app.packages.drive.api.v1.endpoints import activities, admin, auth, files, storage, trash

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(files.router)
api_router.include_router(trash.router)
api_router.include_router(storage.router)
api_router.include_router(activities.router)
api_router.include_router(admin.router)
