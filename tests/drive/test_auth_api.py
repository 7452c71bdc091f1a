"""认证接口的集成测试用例。"""

import base64
import uuid

from fastapi.testclient import TestClient


def _unique(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def test_register_user_success(client: TestClient):
    """注册流程：应成功创建新用户并返回默认配额。"""
    username = _unique("tester")
    response = client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": "tester123"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["code"] == 200
    assert payload["msg"] == "注册成功"
    assert payload["data"]["username"] == username
    assert payload["data"]["used_space"] == 0
    assert payload["data"]["quota"] == 10 * 1024 * 1024 * 1024


def test_register_user_duplicate_username(client: TestClient):
    """注册流程：重复用户名时应返回 409 冲突。"""
    username = _unique("duplicate")
    client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": "tester123"},
    )
    response = client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": f"other-{username}@example.com", "password": "tester123"},
    )

    assert response.status_code == 409
    payload = response.json()
    assert payload["code"] == 409
    assert payload["msg"] == "用户名已存在"


def test_register_user_duplicate_email(client: TestClient):
    first = _unique("mail")
    client.post(
        "/api/v1/auth/register",
        json={"username": first, "email": f"{first}@example.com", "password": "tester123"},
    )
    response = client.post(
        "/api/v1/auth/register",
        json={"username": _unique("mail"), "email": f"{first}@example.com", "password": "tester123"},
    )
    assert response.status_code == 409
    assert response.json()["msg"] == "邮箱已被注册"


def test_register_validation_error(client: TestClient):
    response = client.post("/api/v1/auth/register", json={"username": "x", "password": "1"})
    assert response.status_code == 422
    assert response.json()["msg"] == "请求参数验证失败"


def test_login_success(client: TestClient):
    """登录流程：正确凭证应返回访问令牌。"""
    response = client.post(
        "/api/v1/auth/login",
        json={"username": "admin", "password": "admin123"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["code"] == 200
    assert payload["msg"] == "登录成功"
    assert payload["data"]["token_type"] == "bearer"
    assert payload["data"]["access_token"]


def test_login_with_email(client: TestClient):
    username = _unique("byemail")
    client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": "tester123"},
    )
    response = client.post(
        "/api/v1/auth/login",
        json={"username": f"{username}@example.com", "password": "tester123"},
    )
    assert response.status_code == 200


def test_login_invalid_credentials(client: TestClient):
    """登录流程：错误密码应提示认证失败。"""
    response = client.post(
        "/api/v1/auth/login",
        json={"username": "admin", "password": "wrongpassword"},
    )
    assert response.status_code == 401
    payload = response.json()
    assert payload["code"] == 401
    assert payload["msg"] == "用户名或密码错误"


def test_me_requires_bearer_token(client: TestClient):
    assert client.get("/api/v1/auth/me").status_code == 401
    basic = base64.b64encode(b"admin:admin123").decode()
    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Basic {basic}"})
    assert response.status_code == 401


def test_me_and_logout(client: TestClient):
    login = client.post("/api/v1/auth/login", json={"username": "admin", "password": "admin123"})
    headers = {"Authorization": f"Bearer {login.json()['data']['access_token']}"}

    me = client.get("/api/v1/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["data"]["username"] == "admin"
    assert me.json()["data"]["is_admin"] is True

    logout = client.post("/api/v1/auth/logout", headers=headers)
    assert logout.status_code == 200
    assert logout.json()["msg"] == "退出登录成功"


def _register_and_login(client: TestClient, prefix: str) -> tuple[str, dict]:
    username = _unique(prefix)
    client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": "tester123"},
    )
    login = client.post("/api/v1/auth/login", json={"username": username, "password": "tester123"})
    return username, {"Authorization": f"Bearer {login.json()['data']['access_token']}"}


def test_update_profile(client: TestClient):
    username, headers = _register_and_login(client, "profile")

    response = client.put(
        "/api/v1/auth/profile",
        json={"display_name": "New Name", "email": f"Renamed-{username}@Example.com"},
        headers=headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["display_name"] == "New Name"
    assert data["email"] == f"renamed-{username}@example.com"

    # 只改显示名称时邮箱保持不变
    partial = client.put("/api/v1/auth/profile", json={"display_name": "Again"}, headers=headers)
    assert partial.json()["data"]["email"] == f"renamed-{username}@example.com"
    assert client.get("/api/v1/auth/me", headers=headers).json()["data"]["display_name"] == "Again"


def test_update_profile_rejects_taken_email(client: TestClient):
    other, _ = _register_and_login(client, "holder")
    _, headers = _register_and_login(client, "taker")

    response = client.put("/api/v1/auth/profile", json={"email": f"{other}@example.com"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["msg"] == "邮箱已被注册"

    invalid = client.put("/api/v1/auth/profile", json={"email": "not-an-email"}, headers=headers)
    assert invalid.status_code == 422


def test_change_password(client: TestClient):
    username, headers = _register_and_login(client, "passwd")

    wrong = client.put(
        "/api/v1/auth/password",
        json={"current_password": "not-mine", "new_password": "changed456"},
        headers=headers,
    )
    assert wrong.status_code == 401
    assert wrong.json()["msg"] == "当前密码错误"

    too_short = client.put(
        "/api/v1/auth/password",
        json={"current_password": "tester123", "new_password": "123"},
        headers=headers,
    )
    assert too_short.status_code == 422

    changed = client.put(
        "/api/v1/auth/password",
        json={"current_password": "tester123", "new_password": "changed456"},
        headers=headers,
    )
    assert changed.status_code == 200
    assert changed.json()["msg"] == "密码已修改"

    old = client.post("/api/v1/auth/login", json={"username": username, "password": "tester123"})
    assert old.status_code == 401
    new = client.post("/api/v1/auth/login", json={"username": username, "password": "changed456"})
    assert new.status_code == 200


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["data"] == {"status": "healthy"}
    assert response.headers.get("X-Request-ID")
