"""回收站服务：放入、恢复、彻底删除与过期清理。"""

import io
from datetime import timedelta

import pytest

from app.packages.drive.core.exceptions import ConflictError, IOFailureError, NotFoundError, QuotaExceededError
from app.packages.drive.core.timezone import utcnow
from app.packages.drive.crud.file_nodes import file_node_crud
from app.packages.drive.models.file_node import FileNode
from app.packages.drive.models.file_version import FileVersion
from app.packages.drive.services import trash_service as trash_module


def _upload(namespace, db, owner, name, data: bytes, parent_id=None):
    node, _ = namespace.upload(db, owner, parent_id=parent_id, name=name, stream=io.BytesIO(data))
    return node


def _used(db, owner) -> int:
    db.refresh(owner)
    return owner.used_space


def test_trash_then_restore_returns_node_to_original_place(svc_db, namespace, trash, owner):
    folder = namespace.create_directory(svc_db, owner, parent_id=None, name="keep")
    node = _upload(namespace, svc_db, owner, "doc.txt", b"12345", parent_id=folder.id)

    trashed = trash.trash(svc_db, owner, node)
    assert trashed.is_trashed is True
    assert trashed.trashed_at is not None
    assert _used(svc_db, owner) == 0
    assert namespace.list(svc_db, owner, folder.id) == []
    assert [item.id for item in trash.list_trash(svc_db, owner)] == [node.id]

    restored = trash.restore(svc_db, owner, node)
    assert restored.is_trashed is False
    assert restored.trashed_at is None
    assert restored.parent_id == folder.id
    assert namespace.full_path(svc_db, restored) == "/keep/doc.txt"
    assert _used(svc_db, owner) == 5


def test_trash_is_idempotent(svc_db, namespace, trash, owner):
    node = _upload(namespace, svc_db, owner, "twice.txt", b"abc")
    trash.trash(svc_db, owner, node)
    trash.trash(svc_db, owner, node)
    assert _used(svc_db, owner) == 0


def test_restore_conflicts_with_new_sibling(svc_db, namespace, trash, owner):
    node = _upload(namespace, svc_db, owner, "clash.txt", b"old")
    trash.trash(svc_db, owner, node)
    _upload(namespace, svc_db, owner, "clash.txt", b"new")

    with pytest.raises(ConflictError):
        trash.restore(svc_db, owner, node)
    svc_db.refresh(node)
    assert node.is_trashed is True


def test_restore_requires_trashed_node(svc_db, namespace, trash, owner):
    node = _upload(namespace, svc_db, owner, "live.txt", b"x")
    with pytest.raises(NotFoundError):
        trash.restore(svc_db, owner, node)


def test_restore_reauthorizes_quota(svc_db, namespace, trash, owner):
    node = _upload(namespace, svc_db, owner, "first.bin", b"x" * 600)
    trash.trash(svc_db, owner, node)
    _upload(namespace, svc_db, owner, "second.bin", b"y" * 600)

    with pytest.raises(QuotaExceededError):
        trash.restore(svc_db, owner, node)
    assert _used(svc_db, owner) == 600


def test_trash_does_not_cascade_to_children(svc_db, namespace, trash, owner):
    folder = namespace.create_directory(svc_db, owner, parent_id=None, name="parent")
    child = _upload(namespace, svc_db, owner, "child.txt", b"child", parent_id=folder.id)

    trash.trash(svc_db, owner, folder)

    svc_db.refresh(child)
    assert child.is_trashed is False
    # 子节点不再能通过路径访问
    with pytest.raises(NotFoundError):
        namespace.resolve(svc_db, owner, "/parent/child.txt")
    assert _used(svc_db, owner) == 5


def test_purge_file_frees_exactly_its_size(svc_db, namespace, trash, blob_store, owner):
    keep = _upload(namespace, svc_db, owner, "keep.bin", b"k" * 100)
    node = _upload(namespace, svc_db, owner, "drop.bin", b"d" * 300)
    namespace.upload(svc_db, owner, parent_id=None, name="drop.bin", stream=io.BytesIO(b"d" * 250))
    refs = [node.storage_ref] + [v.storage_ref for v in namespace.versions(svc_db, node)]
    node_id = node.id

    result = trash.purge(svc_db, owner, node)

    assert result == {"purged": 1, "freed_space": 250}
    assert _used(svc_db, owner) == 100
    assert svc_db.get(FileNode, node_id) is None
    assert svc_db.query(FileVersion).filter(FileVersion.file_id == node_id).count() == 0
    assert all(not blob_store.exists(ref) for ref in refs)
    assert blob_store.exists(keep.storage_ref)


def test_purge_empty_directory_leaves_usage_unchanged(svc_db, namespace, trash, owner):
    _upload(namespace, svc_db, owner, "f.txt", b"f" * 10)
    folder = namespace.create_directory(svc_db, owner, parent_id=None, name="empty")

    result = trash.purge(svc_db, owner, folder)

    assert result == {"purged": 1, "freed_space": 0}
    assert _used(svc_db, owner) == 10


def test_purge_directory_removes_whole_subtree(svc_db, namespace, trash, blob_store, owner):
    top = namespace.create_directory(svc_db, owner, parent_id=None, name="top")
    mid = namespace.create_directory(svc_db, owner, parent_id=top.id, name="mid")
    a = _upload(namespace, svc_db, owner, "a.bin", b"a" * 40, parent_id=top.id)
    b = _upload(namespace, svc_db, owner, "b.bin", b"b" * 60, parent_id=mid.id)
    trash.trash(svc_db, owner, b)
    refs = [a.storage_ref, b.storage_ref]

    result = trash.purge(svc_db, owner, top)

    # b 已在回收站中，配额早已释放
    assert result == {"purged": 4, "freed_space": 40}
    assert _used(svc_db, owner) == 0
    assert svc_db.query(FileNode).count() == 0
    assert all(not blob_store.exists(ref) for ref in refs)


def test_empty_trash_purges_every_trashed_node(svc_db, namespace, trash, owner):
    folder = namespace.create_directory(svc_db, owner, parent_id=None, name="old")
    inner = _upload(namespace, svc_db, owner, "inner.txt", b"i" * 7, parent_id=folder.id)
    loose = _upload(namespace, svc_db, owner, "loose.txt", b"l" * 3)
    trash.trash(svc_db, owner, inner)
    trash.trash(svc_db, owner, folder)
    trash.trash(svc_db, owner, loose)

    result = trash.empty_trash(svc_db, owner)

    assert result["purged"] == 3
    assert trash.list_trash(svc_db, owner) == []
    assert _used(svc_db, owner) == 0


def test_purge_expired_only_touches_old_entries(svc_db, namespace, trash, owner):
    old = _upload(namespace, svc_db, owner, "old.txt", b"o")
    recent = _upload(namespace, svc_db, owner, "recent.txt", b"r")
    trash.trash(svc_db, owner, old)
    trash.trash(svc_db, owner, recent)
    old.trashed_at = utcnow() - timedelta(days=45)
    svc_db.commit()

    result = trash.purge_expired(svc_db, owner, older_than_days=30)

    assert result["purged"] == 1
    remaining = trash.list_trash(svc_db, owner)
    assert [item.name for item in remaining] == ["recent.txt"]
    assert file_node_crud.count_live(svc_db, owner_id=owner.id, directories=False) == 0


def test_blob_reclaim_failure_after_purge_is_logged(svc_db, namespace, trash, blob_store, owner, monkeypatch):
    node = _upload(namespace, svc_db, owner, "stuck.txt", b"s" * 20)
    logged = []

    def failing_delete(storage_ref):
        raise IOFailureError("disk gone")

    monkeypatch.setattr(blob_store, "delete", failing_delete)
    monkeypatch.setattr(trash_module.logger, "exception", lambda msg, *args, **kwargs: logged.append(msg % args))

    result = trash.purge(svc_db, owner, node)

    # 元数据已经删除，配额已释放，只留下孤儿 Blob
    assert result["freed_space"] == 20
    assert _used(svc_db, owner) == 0
    assert len(logged) == 1
    assert "leaked" in logged[0]


def test_usage_matches_sum_of_live_file_sizes(svc_db, namespace, trash, owner):
    a = _upload(namespace, svc_db, owner, "a", b"a" * 11)
    _upload(namespace, svc_db, owner, "b", b"b" * 22)
    namespace.upload(svc_db, owner, parent_id=None, name="b", stream=io.BytesIO(b"b" * 5))
    trash.trash(svc_db, owner, a)

    assert _used(svc_db, owner) == file_node_crud.sum_live_size(svc_db, owner_id=owner.id) == 5
