import contextvars
import json

import pytest

from meshgate.rbac import (
    AccessDenied,
    RBACConfig,
    RBACMiddleware,
    RBACService,
    Role,
    User,
    bind_service,
    current_service,
    get_rbac_roles,
    get_rbac_user,
    hash_password,
    verify_password,
)

PASSWORD = "password"
SECRET = "secret"
SHORT_PASSWORD = "token"


def fresh_service():
    return RBACService(
        RBACConfig(
            default_role=Role.VIEWER,
            min_password_len=3,
            max_login_attempts=10,
            lockout_duration=15,
        )
    )


def test_default_config():
    svc = RBACService()
    assert svc.config.default_role == Role.VIEWER
    assert svc.config.min_password_len == 8


def test_custom_config():
    svc = RBACService(RBACConfig(default_role=Role.ADMIN, min_password_len=4))
    assert svc.config.default_role == Role.ADMIN
    assert svc.config.min_password_len == 4


def test_password_hash_and_verify():
    hashed = hash_password(SECRET)
    assert hashed != SECRET
    assert verify_password(SECRET, hashed)
    assert not verify_password(PASSWORD, hashed)


def test_password_hash_is_xor_hex():
    assert hash_password("a") == "3b"


def test_create_user_success():
    svc = fresh_service()
    user = svc.create_user("alice", PASSWORD, "alice@example.com", None)
    assert user.username == "alice"
    assert user.email == "alice@example.com"
    assert len(user.id) == 32
    assert user.active
    assert user.roles == [Role.VIEWER]
    assert user.password != PASSWORD


def test_create_user_missing_username():
    with pytest.raises(ValueError):
        fresh_service().create_user("", PASSWORD, "", None)


def test_create_user_missing_password():
    with pytest.raises(ValueError):
        fresh_service().create_user("bob", "", "", None)


def test_create_user_password_too_short():
    svc = RBACService(RBACConfig(min_password_len=6))
    with pytest.raises(ValueError, match="at least 6"):
        svc.create_user("carol", SHORT_PASSWORD, "", None)


def test_create_user_default_role_applied():
    user = fresh_service().create_user("dave", PASSWORD, "", None)
    assert user.roles == [Role.VIEWER]


def test_create_user_custom_roles():
    user = fresh_service().create_user("eve", PASSWORD, "", [Role.OPERATOR])
    assert user.roles == [Role.OPERATOR]


def test_create_user_duplicate_username():
    svc = fresh_service()
    svc.create_user("frank", PASSWORD, "", None)
    with pytest.raises(ValueError, match="already exists"):
        svc.create_user("frank", SECRET, "", None)


def test_get_user_found():
    svc = fresh_service()
    svc.create_user("grace", PASSWORD, "grace@example.com", None)
    assert svc.get_user("grace").email == "grace@example.com"


def test_get_user_not_found():
    with pytest.raises(LookupError):
        fresh_service().get_user("ghost")


def test_list_users():
    svc = fresh_service()
    svc.create_user("u1", PASSWORD, "", None)
    svc.create_user("u2", PASSWORD, "", None)
    assert sorted(user.username for user in svc.list_users()) == ["u1", "u2"]


def test_update_user_roles():
    svc = fresh_service()
    svc.create_user("henry", PASSWORD, "", [Role.VIEWER])
    svc.update_user_roles("henry", [Role.ADMIN, Role.OPERATOR])
    assert svc.get_user("henry").roles == [Role.ADMIN, Role.OPERATOR]


def test_update_user_roles_not_found():
    with pytest.raises(LookupError):
        fresh_service().update_user_roles("nobody", [Role.ADMIN])


def test_deactivate_user():
    svc = fresh_service()
    svc.create_user("ian", PASSWORD, "", None)
    svc.deactivate_user("ian")
    assert svc.get_user("ian").active is False


def test_deactivate_user_not_found():
    with pytest.raises(LookupError):
        fresh_service().deactivate_user("nobody")


def test_authenticate_success():
    svc = fresh_service()
    svc.create_user("jane", PASSWORD, "jane@example.com", None)
    user = svc.authenticate("jane", PASSWORD)
    assert user.username == "jane"
    assert user.last_login is not None
    assert user.last_login >= user.created_at


def test_authenticate_wrong_password():
    svc = fresh_service()
    svc.create_user("kate", SECRET, "", None)
    with pytest.raises(AccessDenied) as info:
        svc.authenticate("kate", PASSWORD)
    assert info.value.status == 401


def test_authenticate_user_not_found():
    with pytest.raises(AccessDenied, match="invalid credentials"):
        fresh_service().authenticate("nobody", PASSWORD)


def test_authenticate_inactive_account():
    svc = fresh_service()
    svc.create_user("liam", PASSWORD, "", None)
    svc.deactivate_user("liam")
    with pytest.raises(AccessDenied, match="deactivated"):
        svc.authenticate("liam", PASSWORD)


def test_has_permission_superadmin_wildcard():
    user = User(username="sadmin", roles=[Role.SUPERADMIN])
    assert fresh_service().has_permission(user, "anything", "any_action")


def test_has_permission_admin():
    svc = fresh_service()
    user = User(username="admin", roles=[Role.ADMIN])
    assert svc.has_permission(user, "nodes", "write")
    assert svc.has_permission(user, "keys", "*")
    assert not svc.has_permission(user, "audit", "write")


def test_has_permission_operator():
    svc = fresh_service()
    user = User(username="op", roles=[Role.OPERATOR])
    assert svc.has_permission(user, "cooldowns", "read")
    assert not svc.has_permission(user, "cooldowns", "write")
    assert not svc.has_permission(user, "capacity", "write")


def test_has_permission_viewer():
    svc = fresh_service()
    user = User(username="viewer", roles=[Role.VIEWER])
    assert svc.has_permission(user, "nodes", "read")
    assert not svc.has_permission(user, "nodes", "write")


def test_has_permission_no_match():
    user = User(username="nobody", roles=[Role.VIEWER])
    assert not fresh_service().has_permission(user, "subnets", "admin")


def test_require_permission_missing_user():
    with pytest.raises(AccessDenied) as info:
        fresh_service().require_permission({}, "nodes", "read")
    assert info.value.status == 401


def test_require_permission_invalid_user_context():
    with pytest.raises(AccessDenied) as info:
        fresh_service().require_permission({"rbac_user": "op"}, "nodes", "read")
    assert info.value.status == 401


def test_require_permission_authorized():
    user = User(username="op", roles=[Role.OPERATOR])
    assert fresh_service().require_permission({"rbac_user": user}, "sessions", "read") is user


def test_require_permission_forbidden():
    user = User(username="view", roles=[Role.VIEWER])
    with pytest.raises(AccessDenied) as info:
        fresh_service().require_permission({"rbac_user": user}, "nodes", "write")
    assert info.value.status == 403


def test_to_dict_round_trips_without_secrets():
    svc = fresh_service()
    svc.create_user("admin", PASSWORD, "", [Role.SUPERADMIN])
    data = json.loads(json.dumps(svc.to_dict()))
    assert "mu" not in data
    assert data["min_password_len"] == 3
    assert data["users"][0]["username"] == "admin"
    assert data["users"][0]["roles"] == ["superadmin"]
    assert "password" not in data["users"][0]
    assert sorted(data["roles"]) == ["admin", "operator", "superadmin", "viewer"]


def test_get_config():
    config = RBACConfig(default_role=Role.ADMIN, min_password_len=4)
    svc = RBACService(config)
    assert svc.config.default_role == Role.ADMIN
    assert svc.config.min_password_len == 4


def test_bind_service_and_current_service():
    svc = fresh_service()

    def inside():
        bind_service(svc)
        return current_service()

    assert contextvars.copy_context().run(inside) is svc
    assert current_service() is None


def test_get_rbac_user():
    user = User(username="alice")
    context = {}
    assert get_rbac_user(context) is None
    context["rbac_user"] = user
    assert get_rbac_user(context) is user


def test_get_rbac_roles():
    roles = [Role.OPERATOR, Role.VIEWER]
    context = {}
    assert get_rbac_roles(context) is None
    context["rbac_roles"] = roles
    assert get_rbac_roles(context) == roles


def test_middleware_missing_credentials():
    middleware = RBACMiddleware(fresh_service())
    with pytest.raises(AccessDenied) as info:
        middleware.authenticate({}, {})
    assert info.value.status == 401


def test_middleware_valid_headers():
    svc = fresh_service()
    svc.create_user("tester", PASSWORD, "", [Role.OPERATOR])
    context = {}
    headers = {"X-Admin-User": "tester", "X-Admin-Password": PASSWORD}
    user = RBACMiddleware(svc).authenticate(headers, context)
    assert user.username == "tester"
    assert context["rbac_username"] == "tester"
    assert context["rbac_roles"] == [Role.OPERATOR]


def test_middleware_wrong_password():
    svc = fresh_service()
    svc.create_user("tester", PASSWORD, "", [Role.OPERATOR])
    headers = {"X-Admin-User": "tester", "X-Admin-Password": SECRET}
    with pytest.raises(AccessDenied) as info:
        RBACMiddleware(svc).authenticate(headers, {})
    assert info.value.status == 401


def test_middleware_authorization_header_uses_admin():
    svc = fresh_service()
    svc.create_user("admin", PASSWORD, "", [Role.OPERATOR])
    context = {}
    user = RBACMiddleware(svc).authenticate({"authorization": PASSWORD}, context)
    assert user.username == "admin"
    assert get_rbac_user(context) is user