"""Database bootstrapping utilities."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.packages.drive.core.config import get_settings
from app.packages.drive.core.constants import DEFAULT_ADMIN_DISPLAY_NAME
from app.packages.drive.core.security import get_password_hash
from app.packages.drive.db import session as db_session
from app.packages.drive.models import Activity, FileNode, FileVersion, User  # noqa: F401 - register tables
from app.packages.drive.models.base import Base

logger = logging.getLogger("app")


def init_db() -> None:
    """Create all database tables if they do not exist and seed the administrator account."""
    Base.metadata.create_all(bind=db_session.engine)

    session = db_session.SessionLocal()
    try:
        _seed_admin(session)
        session.commit()
    except Exception:  # pragma: no cover - initialization failures should surface
        session.rollback()
        logger.exception("Failed to seed default data during database initialization")
        raise
    finally:
        session.close()


def _seed_admin(db: Session) -> None:
    """Create the initial administrator when the users table is empty."""
    if db.query(User.id).first() is not None:
        return
    settings = get_settings()
    db.add(
        User(
            username=settings.default_admin_username,
            email=settings.default_admin_email,
            hashed_password=get_password_hash(settings.default_admin_password),
            display_name=DEFAULT_ADMIN_DISPLAY_NAME,
            quota=settings.admin_quota_bytes,
            used_space=0,
            is_admin=True,
            is_active=True,
        )
    )
    db.flush()
    logger.info("Seeded administrator account '%s'", settings.default_admin_username)
