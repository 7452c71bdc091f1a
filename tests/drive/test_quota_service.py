"""配额服务：预检、条件更新与用量统计。"""

import pytest

from app.packages.drive.core.exceptions import QuotaExceededError
from app.packages.drive.services.quota_service import QuotaService


@pytest.fixture()
def quota() -> QuotaService:
    return QuotaService()


def test_authorize_compares_against_ceiling(quota, owner):
    quota.authorize(owner, 1000)
    quota.authorize(owner, -50)
    with pytest.raises(QuotaExceededError) as exc_info:
        quota.authorize(owner, 1001)
    assert exc_info.value.data["requested"] == 1001


def test_commit_applies_signed_delta(svc_db, quota, owner):
    quota.commit(svc_db, owner, 600)
    svc_db.commit()
    assert owner.used_space == 600

    quota.commit(svc_db, owner, -200)
    svc_db.commit()
    assert owner.used_space == 400


def test_commit_refuses_to_cross_quota_even_without_authorize(svc_db, quota, owner):
    quota.commit(svc_db, owner, 900)
    svc_db.commit()

    with pytest.raises(QuotaExceededError):
        quota.commit(svc_db, owner, 200)
    svc_db.rollback()
    svc_db.refresh(owner)
    assert owner.used_space == 900


def test_release_never_goes_negative(svc_db, quota, owner):
    quota.commit(svc_db, owner, 100)
    quota.commit(svc_db, owner, -500)
    svc_db.commit()
    assert owner.used_space == 0


def test_remaining_and_usage(svc_db, quota, owner):
    quota.commit(svc_db, owner, 250)
    svc_db.commit()

    assert quota.remaining(owner) == 750
    stats = quota.usage(owner, file_count=3, folder_count=1)
    assert stats == {
        "used_space": 250,
        "quota": 1000,
        "file_count": 3,
        "folder_count": 1,
        "percentage": 25.0,
    }
