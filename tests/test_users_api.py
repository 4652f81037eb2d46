from datetime import datetime, timedelta, timezone

from conftest import TEST_PASSWORD, auth_headers
from dealerdesk.core.security import hash_reset_token
from dealerdesk.models import Tenant, User

CREDENTIAL_FIELDS = {"password", "reset_token", "resetToken", "reset_expires_at", "resetExpiresAt"}


# ── Register / login ──────────────────────────────────────────────────────────

async def test_register_login_and_get_valid_user(client):
    registered = await client.post(
        "/users/register",
        json={"name": "Ravi", "email": "Ravi@Example.com", "password": "secret123", "role": "admin"},
    )

    assert registered.status_code == 201
    user = registered.json()["data"]
    assert user["email"] == "ravi@example.com"
    assert user["role"] == "user"
    assert user["status"] == "active"
    assert not CREDENTIAL_FIELDS & set(user)

    login = await client.post("/users/login", json={"email": "RAVI@example.com", "password": "secret123"})

    assert login.status_code == 200
    body = login.json()
    assert body["success"] is True
    assert body["message"] == "Logged in"
    assert body["user"]["id"] == user["id"]

    me = await client.get("/users/get-valid-user", headers={"Authorization": f"Bearer {body['token']}"})

    assert me.status_code == 200
    assert me.json()["data"]["email"] == "ravi@example.com"
    assert me.json()["data"]["formDefaults"] == {
        "staffName": "Ravi",
        "branchId": None,
        "branchName": "",
        "branchCode": "",
    }


async def test_register_rejects_duplicates_and_short_passwords(client, seed):
    await seed.user(email="taken@example.com", phone="9000000001")

    duplicate_email = await client.post(
        "/users/register", json={"name": "A", "email": "TAKEN@example.com", "password": "secret123"}
    )
    duplicate_phone = await client.post(
        "/users/register",
        json={"name": "B", "email": "b@example.com", "phone": "9000000001", "password": "secret123"},
    )
    short = await client.post("/users/register", json={"name": "C", "email": "c@example.com", "password": "123"})

    assert duplicate_email.status_code == 409
    assert duplicate_email.json()["message"] == "Email is already registered."
    assert duplicate_phone.status_code == 409
    assert duplicate_phone.json()["message"] == "Phone is already registered."
    assert short.status_code == 400
    assert short.json()["message"] == "Name, email and password (min 6 chars) are required."


async def test_invalid_json_body_is_400(client):
    response = await client.post(
        "/users/login", content="{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Invalid JSON body"}


async def test_login_with_wrong_password_is_401(client, seed):
    user = await seed.user()

    response = await client.post("/users/login", json={"email": user.email, "password": "wrong-one"})

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials."


async def test_get_valid_user_for_deleted_user_is_401(client, seed):
    user = await seed.user()
    headers = auth_headers(user)
    admin = await seed.admin()
    await client.delete(f"/users/{user.id}", headers=auth_headers(admin))

    response = await client.get("/users/get-valid-user", headers=headers)

    assert response.status_code == 401


# ── Create ────────────────────────────────────────────────────────────────────

async def test_owner_creates_staff_bound_to_its_branch(client, seed):
    owner, tenant = await seed.owner(max_branches=3)
    branch = await seed.branch(tenant_id=tenant.id, code="BDRH", name="Bidar")

    response = await client.post(
        "/users",
        json={
            "name": "Suresh",
            "email": "suresh@example.com",
            "password": "secret123",
            "role": "executive",
            "branches": [branch.id],
        },
        headers=auth_headers(owner),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == "staff"
    assert data["ownerId"] == tenant.id
    assert data["branchId"] == branch.id
    assert data["owner"] == {"id": tenant.id, "webAppUrl": "", "logoUrl": "", "maxBranches": 3}
    assert data["primaryBranch"]["code"] == "BDRH"
    assert [b["id"] for b in data["branches"]] == [branch.id]
    assert data["formDefaults"] == {
        "staffName": "Suresh",
        "branchId": branch.id,
        "branchName": "Bidar",
        "branchCode": "BDRH",
    }


async def test_owner_cannot_create_admins_or_owners(client, seed):
    owner, _ = await seed.owner()

    for role in ("admin", "owner"):
        response = await client.post(
            "/users",
            json={"name": "X", "email": f"{role}@example.com", "password": "secret123", "role": role},
            headers=auth_headers(owner),
        )
        assert response.status_code == 403
        assert response.json()["reason"] == "forbidden-role-escalation"

    assert await seed.count(User) == 1


async def test_branch_scoped_role_requires_a_branch(client, seed):
    owner, _ = await seed.owner()

    response = await client.post(
        "/users",
        json={"name": "M", "email": "m@example.com", "password": "secret123", "role": "mechanic"},
        headers=auth_headers(owner),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "branch is required for staff/mechanic/callboy"


async def test_branch_must_exist_and_belong_to_the_owner(client, seed):
    owner, _ = await seed.owner()
    _, other = await seed.owner()
    foreign = await seed.branch(tenant_id=other.id, code="ZZ")
    body = {"name": "M", "email": "m@example.com", "password": "secret123", "role": "mechanic"}

    missing = await client.post("/users", json={**body, "branchId": 9999}, headers=auth_headers(owner))
    not_mine = await client.post("/users", json={**body, "branchId": foreign.id}, headers=auth_headers(owner))

    assert missing.status_code == 404
    assert not_mine.status_code == 403


async def test_one_user_per_branch_role(client, seed):
    owner, tenant = await seed.owner()
    branch = await seed.branch(tenant_id=tenant.id, code="A1")
    await seed.user(role="callboy", tenant_id=tenant.id, branch_id=branch.id)

    response = await client.post(
        "/users",
        json={
            "name": "C",
            "email": "c@example.com",
            "password": "secret123",
            "role": "call-boy",
            "primaryBranch": branch.id,
        },
        headers=auth_headers(owner),
    )

    assert response.status_code == 409
    assert response.json()["message"] == "Branch already has this role assigned."


async def test_backend_user_belongs_to_the_tenant_without_branch(client, seed):
    owner, tenant = await seed.owner()
    branch = await seed.branch(tenant_id=tenant.id, code="A1")

    response = await client.post(
        "/users",
        json={
            "name": "Back Office",
            "email": "bo@example.com",
            "password": "secret123",
            "role": "backend",
            "branchId": branch.id,
        },
        headers=auth_headers(owner),
    )

    assert response.status_code == 201
    assert response.json()["data"]["ownerId"] == tenant.id
    assert response.json()["data"]["branchId"] is None


async def test_admin_backend_user_needs_an_owner(client, seed):
    admin = await seed.admin()

    response = await client.post(
        "/users",
        json={"name": "B", "email": "b@example.com", "password": "secret123", "role": "backend"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "owner is required for backend role"


async def test_admin_creates_owner_with_tenant_and_quota(client, seed):
    admin = await seed.admin()

    response = await client.post(
        "/users",
        json={"name": "New Owner", "email": "no@example.com", "password": "secret123", "role": "owner", "maxBranches": 4},
        headers=auth_headers(admin),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["role"] == "owner"
    assert data["owner"]["maxBranches"] == 4
    tenants = await seed.fetch_all(Tenant, Tenant.user_id == data["id"])
    assert len(tenants) == 1
    assert data["ownerId"] == tenants[0].id


async def test_staff_cannot_manage_users(client, seed):
    _, tenant = await seed.owner()
    branch = await seed.branch(tenant_id=tenant.id, code="A1")
    staff = await seed.user(role="staff", tenant_id=tenant.id, branch_id=branch.id)

    listing = await client.get("/users", headers=auth_headers(staff))
    creating = await client.post(
        "/users",
        json={"name": "X", "email": "x@example.com", "password": "secret123"},
        headers=auth_headers(staff),
    )

    assert listing.status_code == 403
    assert listing.json()["reason"] == "forbidden-role-required"
    assert creating.status_code == 403


# ── Read / list ───────────────────────────────────────────────────────────────

async def test_owner_lists_only_its_tenant(client, seed):
    owner, tenant = await seed.owner()
    _, other = await seed.owner()
    await seed.user(name="Mine", tenant_id=tenant.id, role="backend")
    await seed.user(name="Theirs", tenant_id=other.id, role="backend")

    response = await client.get("/users", headers=auth_headers(owner))

    names = {u["name"] for u in response.json()["data"]["items"]}
    assert names == {"Owner", "Mine"}


async def test_user_filters(client, seed):
    owner, tenant = await seed.owner()
    branch = await seed.branch(tenant_id=tenant.id, code="A1")
    await seed.user(name="Ravi Kumar", role="staff", tenant_id=tenant.id, branch_id=branch.id)
    await seed.user(name="Mahesh", role="mechanic", tenant_id=tenant.id, branch_id=branch.id)

    by_q = await client.get("/users", params={"q": "ravi"}, headers=auth_headers(owner))
    by_role = await client.get("/users", params={"role": "Executive"}, headers=auth_headers(owner))
    by_branch = await client.get("/users", params={"branch": branch.id}, headers=auth_headers(owner))

    assert [u["name"] for u in by_q.json()["data"]["items"]] == ["Ravi Kumar"]
    assert [u["name"] for u in by_role.json()["data"]["items"]] == ["Ravi Kumar"]
    assert by_branch.json()["data"]["total"] == 2


async def test_public_user_listing_is_redacted_and_flagged(client, seed):
    _, tenant = await seed.owner()
    await seed.user(name="Mine", tenant_id=tenant.id, role="backend")

    anonymous = await client.get("/users/public")
    by_owner = await client.get("/users/public", params={"owner": tenant.id})

    assert anonymous.json() == {
        "success": True,
        "message": None,
        "data": {"items": [], "total": 0},
        "public": True,
    }
    body = by_owner.json()
    assert body["public"] is True
    assert body["data"]["total"] == 2
    for item in body["data"]["items"]:
        assert not CREDENTIAL_FIELDS & set(item)


async def test_get_user_by_id(client, seed):
    owner, tenant = await seed.owner()
    member = await seed.user(tenant_id=tenant.id, role="backend")
    stranger = await seed.user()

    own = await client.get(f"/users/{member.id}", headers=auth_headers(owner))
    missing = await client.get("/users/9999", headers=auth_headers(owner))
    forbidden = await client.get(f"/users/{stranger.id}", headers=auth_headers(owner))
    self_read = await client.get(f"/users/{stranger.id}", headers=auth_headers(stranger))

    assert own.status_code == 200
    assert missing.status_code == 404
    assert forbidden.status_code == 403
    assert self_read.status_code == 200


# ── Update / delete ───────────────────────────────────────────────────────────

async def test_owner_updates_its_user(client, seed):
    owner, tenant = await seed.owner()
    member = await seed.user(tenant_id=tenant.id, role="backend", phone="9000000002")

    response = await client.put(
        f"/users/{member.id}",
        json={"name": "Renamed", "status": "suspended", "password": "newpass1"},
        headers=auth_headers(owner),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Renamed"
    assert data["status"] == "suspended"
    assert data["phone"] == "9000000002"

    login = await client.post("/users/login", json={"email": member.email, "password": "newpass1"})
    assert login.status_code == 200


async def test_owner_cannot_promote_or_change_quota(client, seed):
    owner, tenant = await seed.owner()
    member = await seed.user(tenant_id=tenant.id, role="backend")

    promote = await client.put(f"/users/{member.id}", json={"role": "admin"}, headers=auth_headers(owner))
    quota = await client.put(f"/users/{owner.id}", json={"maxBranches": 50}, headers=auth_headers(owner))

    assert promote.status_code == 403
    assert promote.json()["reason"] == "forbidden-role-escalation"
    assert quota.status_code == 403
    assert (await seed.get(Tenant, tenant.id)).max_branches == 1


async def test_admin_changes_an_owners_quota(client, seed):
    owner, tenant = await seed.owner()
    admin = await seed.admin()

    response = await client.put(f"/users/{owner.id}", json={"maxBranches": 6}, headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["data"]["owner"]["maxBranches"] == 6


async def test_owner_cannot_edit_users_of_another_tenant(client, seed):
    owner, _ = await seed.owner()
    _, other = await seed.owner()
    theirs = await seed.user(tenant_id=other.id, role="backend")

    update = await client.put(f"/users/{theirs.id}", json={"name": "Mine"}, headers=auth_headers(owner))
    delete = await client.delete(f"/users/{theirs.id}", headers=auth_headers(owner))

    assert update.status_code == 403
    assert delete.status_code == 403
    assert await seed.get(User, theirs.id) is not None


async def test_delete_user(client, seed):
    owner, tenant = await seed.owner()
    member = await seed.user(tenant_id=tenant.id, role="backend")

    deleted = await client.delete(f"/users/{member.id}", headers=auth_headers(owner))
    missing = await client.delete(f"/users/{member.id}", headers=auth_headers(owner))

    assert deleted.status_code == 200
    assert deleted.json()["message"] == "User deleted"
    assert missing.status_code == 404


# ── Self-service ──────────────────────────────────────────────────────────────

async def test_become_owner_creates_tenant(client, seed):
    user = await seed.user()

    response = await client.post(
        "/users/become-owner",
        json={"webAppUrl": "https://dealer.example.com", "maxBranches": 2},
        headers=auth_headers(user),
    )
    again = await client.post("/users/become-owner", json={}, headers=auth_headers(user))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["role"] == "owner"
    assert data["owner"]["webAppUrl"] == "https://dealer.example.com"
    assert data["owner"]["maxBranches"] == 2
    assert again.status_code == 400
    assert again.json()["message"] == "Already an owner"


async def test_profile_update_creates_missing_tenant(client, seed):
    owner = await seed.user(role="owner", name="Owner")

    response = await client.patch(
        "/users/profile",
        json={"name": "Renamed Owner", "logoUrl": "https://cdn.example.com/logo.png", "maxBranches": 3},
        headers=auth_headers(owner),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Renamed Owner"
    assert data["owner"]["logoUrl"] == "https://cdn.example.com/logo.png"
    assert data["owner"]["maxBranches"] == 3


async def test_profile_quota_change_is_denied_for_existing_tenant(client, seed):
    owner, tenant = await seed.owner(max_branches=2)

    same = await client.put("/users/profile", json={"maxBranches": 2, "webAppUrl": "https://a.example.com"}, headers=auth_headers(owner))
    changed = await client.put("/users/profile", json={"maxBranches": 9}, headers=auth_headers(owner))

    assert same.status_code == 200
    assert same.json()["data"]["owner"]["webAppUrl"] == "https://a.example.com"
    assert changed.status_code == 403
    assert changed.json()["reason"] == "forbidden-role-escalation"
    assert (await seed.get(Tenant, tenant.id)).max_branches == 2


async def test_profile_is_for_owners_and_admins(client, seed):
    user = await seed.user()
    admin = await seed.admin()

    as_user = await client.patch("/users/profile", json={"name": "X"}, headers=auth_headers(user))
    as_admin = await client.patch("/users/profile", json={"name": "X"}, headers=auth_headers(admin))

    assert as_user.status_code == 403
    assert as_admin.status_code == 404
    assert as_admin.json()["message"] == "Owner profile not found"


async def test_forgot_and_reset_password(client, seed):
    user = await seed.user(email="forgetful@example.com")

    forgot = await client.post("/users/forgot-password", json={"email": "Forgetful@example.com"})

    assert forgot.status_code == 200
    body = forgot.json()
    assert body["emailSent"] is False
    raw_token = body["devResetToken"]
    assert len(raw_token) == 48
    stored = await seed.get(User, user.id)
    assert stored.reset_token == hash_reset_token(raw_token)

    reset = await client.post("/users/reset-password", json={"token": raw_token, "password": "brandnew1"})
    reused = await client.post("/users/reset-password", json={"token": raw_token, "password": "brandnew2"})
    old_login = await client.post("/users/login", json={"email": user.email, "password": TEST_PASSWORD})
    new_login = await client.post("/users/login", json={"email": user.email, "password": "brandnew1"})

    assert reset.status_code == 200
    assert reset.json()["message"] == "Password has been reset successfully."
    assert reused.status_code == 400
    assert old_login.status_code == 401
    assert new_login.status_code == 200


async def test_forgot_password_for_unknown_email_is_404(client):
    response = await client.post("/users/forgot-password", json={"email": "nobody@example.com"})

    assert response.status_code == 404


async def test_expired_reset_token_is_rejected(client, seed, session_factory):
    user = await seed.user()
    async with session_factory() as session:
        db_user = await session.get(User, user.id)
        db_user.reset_token = hash_reset_token("expired-token")
        db_user.reset_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await session.commit()

    response = await client.post("/users/reset-password", json={"token": "expired-token", "password": "brandnew1"})

    assert response.status_code == 400
    assert response.json()["message"] == "Reset link is invalid or has expired."


async def test_unparsable_list_params_are_ignored(client, seed):
    owner, tenant = await seed.owner()
    await seed.user(name="Mine", tenant_id=tenant.id, role="backend")

    public_blank = await client.get("/users/public", params={"owner": ""})
    public_fallback = await client.get(
        "/users/public", params={"owner": "abc", "branch": "x"}, headers=auth_headers(owner)
    )
    private = await client.get(
        "/users", params={"owner": "abc", "branch": "", "limit": "many"}, headers=auth_headers(owner)
    )

    assert public_blank.status_code == 200
    assert public_blank.json()["data"] == {"items": [], "total": 0}
    assert public_fallback.status_code == 200
    assert public_fallback.json()["data"]["total"] == 2
    assert private.status_code == 200
    assert private.json()["data"]["total"] == 2
