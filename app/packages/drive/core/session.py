"""登录会话：Redis 或内存后端实现的滑动过期会话。"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis

from app.packages.drive.core.config import get_settings
from app.packages.drive.core.logger import logger


class SessionBackend:
    """会话后端接口：创建、续期与删除。"""

    def create_session(self, user_id: int, ttl_seconds: int) -> str:  # pragma: no cover - interface definition
        raise NotImplementedError

    def touch_session(self, session_id: str, user_id: int, ttl_seconds: int) -> bool:  # pragma: no cover
        raise NotImplementedError

    def delete_session(self, session_id: str) -> None:  # pragma: no cover
        raise NotImplementedError


class RedisSessionBackend(SessionBackend):
    KEY_PREFIX = "stratus:session:"

    def __init__(self, url: str) -> None:
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self._client.ping()

    def create_session(self, user_id: int, ttl_seconds: int) -> str:
        session_id = uuid.uuid4().hex
        # SET EX 一步写入值与过期时间
        self._client.set(self.KEY_PREFIX + session_id, str(user_id), ex=ttl_seconds)
        return session_id

    def touch_session(self, session_id: str, user_id: int, ttl_seconds: int) -> bool:
        key = self.KEY_PREFIX + session_id
        if self._client.get(key) != str(user_id):
            return False
        return bool(self._client.expire(key, ttl_seconds))

    def delete_session(self, session_id: str) -> None:
        self._client.delete(self.KEY_PREFIX + session_id)


class InMemorySessionBackend(SessionBackend):
    """测试环境或 Redis 不可用时的进程内实现。"""

    def __init__(self) -> None:
        self._store: dict[str, tuple[int, datetime]] = {}
        self._lock = threading.Lock()

    def create_session(self, user_id: int, ttl_seconds: int) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._store[session_id] = (user_id, _expiry(ttl_seconds))
        return session_id

    def touch_session(self, session_id: str, user_id: int, ttl_seconds: int) -> bool:
        with self._lock:
            record = self._store.get(session_id)
            if record is None:
                return False
            stored_user_id, current_expiry = record
            if stored_user_id != user_id or current_expiry < datetime.now(timezone.utc):
                self._store.pop(session_id, None)
                return False
            self._store[session_id] = (stored_user_id, _expiry(ttl_seconds))
            return True

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._store.pop(session_id, None)


def _expiry(ttl_seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)


_backend: Optional[SessionBackend] = None
_backend_lock = threading.Lock()


def _get_backend() -> SessionBackend:
    global _backend
    if _backend is not None:
        return _backend

    with _backend_lock:
        if _backend is not None:
            return _backend
        settings = get_settings()
        if not settings.redis_enabled:
            logger.info("Redis disabled by configuration, using in-memory session store")
            _backend = InMemorySessionBackend()
            return _backend
        try:
            _backend = RedisSessionBackend(settings.redis_url)
            logger.info("Session store initialized with Redis at %s", settings.redis_url)
        except redis.RedisError as exc:  # pragma: no cover - fallback path
            logger.warning("Redis unavailable (%s), falling back to in-memory session store", exc)
            _backend = InMemorySessionBackend()
    return _backend


def create_session(user_id: int, ttl_seconds: int) -> str:
    """创建会话并返回会话 ID。"""
    return _get_backend().create_session(user_id, ttl_seconds)


def touch_session(session_id: str, user_id: int, ttl_seconds: int) -> bool:
    """刷新会话 TTL，若会话不存在或用户不匹配则返回 ``False``。"""
    return _get_backend().touch_session(session_id, user_id, ttl_seconds)


def delete_session(session_id: str) -> None:
    _get_backend().delete_session(session_id)
