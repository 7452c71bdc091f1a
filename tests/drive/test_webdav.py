"""WebDAV 适配层集成测试（HTTP Basic 认证）。"""

import uuid
import xml.etree.ElementTree as ET

from fastapi.testclient import TestClient

from app.packages.drive.models.user import User

API = "/api/v1"
DAV = "/webdav"
NS = "{DAV:}"


def _dav_user(client: TestClient) -> tuple[str, str]:
    username = f"dav_{uuid.uuid4().hex[:8]}"
    client.post(
        f"{API}/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": "secret123"},
    )
    return username, "secret123"


def _hrefs(response) -> list[str]:
    root = ET.fromstring(response.content)
    return [el.text for el in root.iter(f"{NS}href")]


def _props(response) -> dict[str, dict[str, str]]:
    root = ET.fromstring(response.content)
    result = {}
    for item in root.iter(f"{NS}response"):
        href = item.find(f"{NS}href").text
        prop = item.find(f"{NS}propstat/{NS}prop")
        result[href] = {child.tag.replace(NS, ""): (child.text or "") for child in prop}
    return result


def test_requires_basic_auth(client: TestClient):
    response = client.request("PROPFIND", f"{DAV}/")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == 'Basic realm="WebDAV"'
    assert response.content == b""

    wrong = client.request("PROPFIND", f"{DAV}/", auth=("admin", "wrong-password"))
    assert wrong.status_code == 401


def test_options_advertises_capabilities(client: TestClient):
    auth = _dav_user(client)
    response = client.options(f"{DAV}/", auth=auth)
    assert response.status_code == 200
    assert response.headers["dav"] == "1, 2"
    assert response.headers["ms-author-via"] == "DAV"
    assert "PROPFIND" in response.headers["allow"]


def test_put_propfind_get_flow(client: TestClient):
    auth = _dav_user(client)

    assert client.request("MKCOL", f"{DAV}/docs", auth=auth).status_code == 201
    put = client.put(f"{DAV}/docs/hello world.txt", content=b"hello", auth=auth)
    assert put.status_code == 201

    listing = client.request("PROPFIND", f"{DAV}/docs/", headers={"Depth": "1"}, auth=auth)
    assert listing.status_code == 207
    assert listing.headers["content-type"].startswith("application/xml")
    props = _props(listing)
    assert set(props) == {"/webdav/docs/", "/webdav/docs/hello%20world.txt"}
    collection = ET.fromstring(listing.content).find(f"{NS}response/{NS}propstat/{NS}prop/{NS}resourcetype/{NS}collection")
    assert collection is not None
    assert "getcontentlength" not in props["/webdav/docs/"]
    file_props = props["/webdav/docs/hello%20world.txt"]
    assert file_props["displayname"] == "hello world.txt"
    assert file_props["getcontentlength"] == "5"
    assert file_props["getcontenttype"] == "text/plain"
    assert file_props["getetag"].startswith('"') and file_props["getetag"].endswith('"')
    assert file_props["getlastmodified"].endswith("GMT")

    root = client.request("PROPFIND", f"{DAV}", auth=auth)
    assert _hrefs(root) == ["/webdav/", "/webdav/docs/"]

    got = client.get(f"{DAV}/docs/hello%20world.txt", auth=auth)
    assert got.status_code == 200
    assert got.content == b"hello"
    assert got.headers["accept-ranges"] == "bytes"
    assert got.headers["etag"] == file_props["getetag"]

    head = client.head(f"{DAV}/docs/hello%20world.txt", auth=auth)
    assert head.status_code == 200
    assert head.headers["content-length"] == "5"


def test_propfind_depth_zero_and_file_target(client: TestClient):
    auth = _dav_user(client)
    client.request("MKCOL", f"{DAV}/d", auth=auth)
    client.put(f"{DAV}/d/f.bin", content=b"1234", auth=auth)

    self_only = client.request("PROPFIND", f"{DAV}/d", headers={"Depth": "0"}, auth=auth)
    assert _hrefs(self_only) == ["/webdav/d/"]

    single = client.request("PROPFIND", f"{DAV}/d/f.bin", auth=auth)
    assert single.status_code == 207
    assert _hrefs(single) == ["/webdav/d/f.bin"]

    missing = client.request("PROPFIND", f"{DAV}/d/none", auth=auth)
    assert missing.status_code == 404
    assert missing.content == b""


def test_get_on_collection_returns_listing(client: TestClient):
    auth = _dav_user(client)
    client.request("MKCOL", f"{DAV}/shelf", auth=auth)
    response = client.get(f"{DAV}/shelf/", auth=auth)
    assert response.status_code == 207
    assert _hrefs(response) == ["/webdav/shelf/"]


def test_empty_put_creates_nothing(client: TestClient):
    auth = _dav_user(client)

    empty_new = client.put(f"{DAV}/placeholder.txt", content=b"", auth=auth)
    assert empty_new.status_code == 201
    assert client.get(f"{DAV}/placeholder.txt", auth=auth).status_code == 404

    client.put(f"{DAV}/real.txt", content=b"payload", auth=auth)
    before = _props(client.request("PROPFIND", f"{DAV}/real.txt", auth=auth))["/webdav/real.txt"]
    empty_existing = client.put(f"{DAV}/real.txt", content=b"", auth=auth)
    assert empty_existing.status_code == 204
    after = _props(client.request("PROPFIND", f"{DAV}/real.txt", auth=auth))["/webdav/real.txt"]
    assert after["getetag"] == before["getetag"]
    assert after["getcontentlength"] == "7"
    assert client.get(f"{DAV}/real.txt", auth=auth).content == b"payload"


def test_put_overwrite_returns_no_content_and_versions(client: TestClient):
    auth = _dav_user(client)
    assert client.put(f"{DAV}/v.txt", content=b"one", auth=auth).status_code == 201
    assert client.put(f"{DAV}/v.txt", content=b"two!", auth=auth).status_code == 204
    assert client.get(f"{DAV}/v.txt", auth=auth).content == b"two!"

    login = client.post(f"{API}/auth/login", json={"username": auth[0], "password": auth[1]})
    headers = {"Authorization": f"Bearer {login.json()['data']['access_token']}"}
    node = client.get(f"{API}/files", params={"path": "/"}, headers=headers).json()["data"]["files"][0]
    assert node["version"] == 2
    versions = client.get(f"{API}/files/{node['id']}/versions", headers=headers).json()["data"]
    assert [item["version"] for item in versions] == [1]


def test_missing_parent_is_conflict(client: TestClient):
    auth = _dav_user(client)
    assert client.put(f"{DAV}/no/such/file.txt", content=b"x", auth=auth).status_code == 409
    assert client.request("MKCOL", f"{DAV}/no/such", auth=auth).status_code == 409


def test_mkcol_existing_is_conflict(client: TestClient):
    auth = _dav_user(client)
    assert client.request("MKCOL", f"{DAV}/twice", auth=auth).status_code == 201
    assert client.request("MKCOL", f"{DAV}/twice", auth=auth).status_code == 409


def test_delete_purges_immediately(client: TestClient):
    auth = _dav_user(client)
    client.request("MKCOL", f"{DAV}/tmp", auth=auth)
    client.put(f"{DAV}/tmp/a.txt", content=b"aaaa", auth=auth)

    assert client.delete(f"{DAV}/tmp", auth=auth).status_code == 204
    assert client.get(f"{DAV}/tmp/a.txt", auth=auth).status_code == 404
    assert client.delete(f"{DAV}/tmp", auth=auth).status_code == 404

    login = client.post(f"{API}/auth/login", json={"username": auth[0], "password": auth[1]})
    headers = {"Authorization": f"Bearer {login.json()['data']['access_token']}"}
    assert client.get(f"{API}/trash", headers=headers).json()["data"] == []
    assert client.get(f"{API}/storage/stats", headers=headers).json()["data"]["used_space"] == 0


def test_move_and_overwrite_semantics(client: TestClient):
    auth = _dav_user(client)
    client.request("MKCOL", f"{DAV}/target", auth=auth)
    client.put(f"{DAV}/a.txt", content=b"A", auth=auth)
    client.put(f"{DAV}/b.txt", content=b"BB", auth=auth)

    moved = client.request(
        "MOVE",
        f"{DAV}/a.txt",
        headers={"Destination": "http://testserver/webdav/target/renamed.txt"},
        auth=auth,
    )
    assert moved.status_code == 201
    assert client.get(f"{DAV}/target/renamed.txt", auth=auth).content == b"A"
    assert client.get(f"{DAV}/a.txt", auth=auth).status_code == 404

    refused = client.request(
        "MOVE",
        f"{DAV}/b.txt",
        headers={"Destination": "/webdav/target/renamed.txt", "Overwrite": "F"},
        auth=auth,
    )
    assert refused.status_code == 412

    replaced = client.request(
        "MOVE",
        f"{DAV}/b.txt",
        headers={"Destination": "/webdav/target/renamed.txt", "Overwrite": "T"},
        auth=auth,
    )
    assert replaced.status_code == 204
    assert client.get(f"{DAV}/target/renamed.txt", auth=auth).content == b"BB"


def test_move_collection_into_itself_is_forbidden(client: TestClient):
    auth = _dav_user(client)
    client.request("MKCOL", f"{DAV}/outer", auth=auth)
    client.request("MKCOL", f"{DAV}/outer/inner", auth=auth)

    response = client.request(
        "MOVE",
        f"{DAV}/outer",
        headers={"Destination": "/webdav/outer/inner/outer"},
        auth=auth,
    )
    assert response.status_code == 403
    assert _hrefs(client.request("PROPFIND", f"{DAV}/outer", auth=auth)) == ["/webdav/outer/", "/webdav/outer/inner/"]


def test_copy_file_and_reject_collection(client: TestClient):
    auth = _dav_user(client)
    client.put(f"{DAV}/orig.txt", content=b"original", auth=auth)
    client.request("MKCOL", f"{DAV}/folder", auth=auth)

    copied = client.request("COPY", f"{DAV}/orig.txt", headers={"Destination": "/webdav/folder/dup.txt"}, auth=auth)
    assert copied.status_code == 201
    assert client.get(f"{DAV}/folder/dup.txt", auth=auth).content == b"original"
    assert client.get(f"{DAV}/orig.txt", auth=auth).content == b"original"

    collection = client.request("COPY", f"{DAV}/folder", headers={"Destination": "/webdav/folder2"}, auth=auth)
    assert collection.status_code == 403

    no_destination = client.request("COPY", f"{DAV}/orig.txt", auth=auth)
    assert no_destination.status_code == 400


def test_quota_exceeded_maps_to_insufficient_storage(client: TestClient, db_session_fixture):
    auth = _dav_user(client)
    user = db_session_fixture.query(User).filter(User.username == auth[0]).one()
    user.quota = 10
    db_session_fixture.commit()

    response = client.put(f"{DAV}/too-big.bin", content=b"x" * 11, auth=auth)
    assert response.status_code == 507
    assert client.put(f"{DAV}/fits.bin", content=b"x" * 10, auth=auth).status_code == 201


def test_overwriting_copy_over_quota_keeps_destination(client: TestClient, db_session_fixture):
    auth = _dav_user(client)
    user = db_session_fixture.query(User).filter(User.username == auth[0]).one()
    user.quota = 100
    db_session_fixture.commit()
    client.put(f"{DAV}/big.bin", content=b"b" * 60, auth=auth)
    client.put(f"{DAV}/small.bin", content=b"s" * 30, auth=auth)

    response = client.request(
        "COPY",
        f"{DAV}/big.bin",
        headers={"Destination": "/webdav/small.bin", "Overwrite": "T"},
        auth=auth,
    )
    assert response.status_code == 507
    kept = client.get(f"{DAV}/small.bin", auth=auth)
    assert kept.status_code == 200
    assert kept.content == b"s" * 30

    # 覆盖后净用量减少时照常执行
    shrink = client.request(
        "COPY",
        f"{DAV}/small.bin",
        headers={"Destination": "/webdav/big.bin", "Overwrite": "T"},
        auth=auth,
    )
    assert shrink.status_code == 204
    assert client.get(f"{DAV}/big.bin", auth=auth).content == b"s" * 30
    db_session_fixture.refresh(user)
    assert user.used_space == 60


def test_overwriting_move_replaces_destination_and_releases_space(client: TestClient, db_session_fixture):
    auth = _dav_user(client)
    client.request("MKCOL", f"{DAV}/dir", auth=auth)
    client.put(f"{DAV}/dir/old.bin", content=b"o" * 40, auth=auth)
    client.put(f"{DAV}/new.bin", content=b"n" * 10, auth=auth)

    response = client.request(
        "MOVE",
        f"{DAV}/new.bin",
        headers={"Destination": "/webdav/dir/old.bin", "Overwrite": "T"},
        auth=auth,
    )
    assert response.status_code == 204
    assert client.get(f"{DAV}/dir/old.bin", auth=auth).content == b"n" * 10
    assert client.get(f"{DAV}/new.bin", auth=auth).status_code == 404
    user = db_session_fixture.query(User).filter(User.username == auth[0]).one()
    assert user.used_space == 10


def test_names_with_surrounding_whitespace(client: TestClient):
    auth = _dav_user(client)
    assert client.put(f"{DAV}/trail%20", content=b"x", auth=auth).status_code == 400
    assert client.request("MKCOL", f"{DAV}/%20lead", auth=auth).status_code == 400

    assert client.put(f"{DAV}/plain", content=b"x", auth=auth).status_code == 201
    # 路径段不做裁剪，带空格的路径不会解析到同名节点
    assert client.get(f"{DAV}/plain%20", auth=auth).status_code == 404
    listing = client.request("PROPFIND", f"{DAV}/", headers={"Depth": "1"}, auth=auth)
    assert _hrefs(listing) == ["/webdav/", "/webdav/plain"]


def test_lock_and_unlock_are_advisory(client: TestClient):
    auth = _dav_user(client)
    client.put(f"{DAV}/locked.txt", content=b"v1", auth=auth)

    lock = client.request("LOCK", f"{DAV}/locked.txt", auth=auth)
    assert lock.status_code == 200
    token = lock.headers["lock-token"]
    assert token.startswith("<opaquelocktoken:") and token.endswith(">")
    root = ET.fromstring(lock.content)
    assert root.find(f"{NS}lockdiscovery/{NS}activelock/{NS}timeout").text == "Second-3600"

    # 锁只是建议性质，其他写入不受影响
    assert client.put(f"{DAV}/locked.txt", content=b"v2", auth=auth).status_code == 204
    unlock = client.request("UNLOCK", f"{DAV}/locked.txt", headers={"Lock-Token": token}, auth=auth)
    assert unlock.status_code == 204


def test_invalid_name_and_root_operations(client: TestClient):
    auth = _dav_user(client)
    assert client.put(f"{DAV}/bad%3Aname.txt", content=b"x", auth=auth).status_code == 400
    assert client.delete(f"{DAV}/", auth=auth).status_code == 403
