from datetime import datetime, timedelta, timezone

from sitedata.auth.security import create_access_token
from sitedata.config import settings
from sitedata.db.enums import SiteRole, UserRole
from tests.factories import (
    TEST_ISSUER,
    auth_headers,
    grant,
    make_model,
    make_schema,
    make_site,
    make_user,
)


def _upload_body(*days, overwrite=False):
    return {
        "rows": [{"date": day, "sensorData": {"temperature": 20 + i}} for i, day in enumerate(days)],
        "overwriteExisting": overwrite,
    }


# ---- /api/users ----

async def test_me_provisions_user_on_first_call(client):
    token = create_access_token(
        {"sub": "new-sub", "iss": TEST_ISSUER, "email": "new@example.com", "name": "New"}
    )
    headers = {"Authorization": f"Bearer {token}"}

    first = await client.get("/api/users/me", headers=headers)
    second = await client.get("/api/users/me", headers=headers)

    assert first.status_code == 200
    body = first.json()
    assert body["email"] == "new@example.com"
    assert body["role"] == "User"
    assert body["isIndividual"] is True
    assert body["companyName"] is None
    assert second.json()["id"] == body["id"]


async def test_me_requires_email_claim(client):
    token = create_access_token({"sub": "no-mail", "iss": TEST_ISSUER})

    response = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Email claim not found in token"


async def test_me_requires_issuer(client):
    token = create_access_token({"sub": "abc", "email": "x@example.com"})

    response = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


async def test_invalid_and_missing_tokens(client):
    bad = await client.get("/api/users/me", headers={"Authorization": "Bearer nope"})
    missing = await client.get("/api/users/me")

    assert bad.status_code == 401
    assert missing.status_code in (401, 403)


async def test_unknown_identity_is_rejected_by_site_routes(client):
    token = create_access_token({"sub": "ghost", "iss": TEST_ISSUER, "email": "g@example.com"})

    response = await client.get("/api/sites", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["detail"] == "User not found"


async def test_health_endpoints(client):
    assert (await client.get("/api/users/health")).json()["service"] == "users"
    assert (await client.get("/health")).json()["status"] == "healthy"


# ---- /api/sites ----

async def test_site_list_shows_only_granted_sites(client, session, company, site):
    await make_site(session, company, name="South Plant")
    viewer = await make_user(session, "viewer@example.com")
    await grant(session, viewer, site, SiteRole.VIEWER)

    response = await client.get("/api/sites", headers=auth_headers(viewer))

    assert response.status_code == 200
    sites = response.json()
    assert [s["id"] for s in sites] == [site.id]
    assert sites[0]["userRole"] == "Viewer"
    assert sites[0]["companyName"] == "Acme Utilities"
    assert sites[0]["status"] == "PendingSetup"


async def test_admin_sees_all_sites_without_role(client, session, company, site):
    await make_site(session, company, name="South Plant")
    admin = await make_user(session, "admin@example.com", role=UserRole.ADMIN)

    sites = (await client.get("/api/sites", headers=auth_headers(admin))).json()

    assert len(sites) == 2
    assert all(s["userRole"] is None for s in sites)


async def test_site_detail_requires_access(client, session, site):
    stranger = await make_user(session, "stranger@example.com")

    response = await client.get(f"/api/sites/{site.id}", headers=auth_headers(stranger))

    assert response.status_code == 403


async def test_site_detail(client, session, site):
    schema = await make_schema(session, site)
    model = await make_model(session, site, version=2.0)
    owner = await make_user(session, "owner@example.com")
    await grant(session, owner, site, SiteRole.OWNER)
    await client.post(
        f"/api/sites/{site.id}/data", json=_upload_body("2025-06-01"), headers=auth_headers(owner)
    )

    response = await client.get(f"/api/sites/{site.id}", headers=auth_headers(owner))

    assert response.status_code == 200
    detail = response.json()
    assert detail["userRole"] == "Owner"
    assert detail["activeModel"]["id"] == model.id
    assert detail["currentSchema"]["id"] == schema.id
    assert detail["totalUploads"] == 1
    assert detail["totalRowsInserted"] == 1
    assert detail["timezone"] == "UTC"


async def test_missing_site_detail_for_admin_is_404(client, session):
    admin = await make_user(session, "admin@example.com", role=UserRole.ADMIN)

    response = await client.get("/api/sites/999", headers=auth_headers(admin))

    assert response.status_code == 404


async def test_viewer_cannot_upload(client, session, site):
    viewer = await make_user(session, "viewer@example.com")
    await grant(session, viewer, site, SiteRole.VIEWER)

    response = await client.post(
        f"/api/sites/{site.id}/data", json=_upload_body("2025-06-01"), headers=auth_headers(viewer)
    )

    assert response.status_code == 403


async def test_operator_upload_round_trip(client, session, site):
    operator = await make_user(session, "operator@example.com", name="Olive")
    await grant(session, operator, site, SiteRole.OPERATOR)
    headers = auth_headers(operator)

    response = await client.post(
        f"/api/sites/{site.id}/data", json=_upload_body("2025-06-01", "2025-06-02"), headers=headers
    )

    assert response.status_code == 200
    result = response.json()
    assert result["success"] is True
    assert result["rowsInserted"] == 2
    assert result["inferenceTriggered"] is False

    uploads = (await client.get(f"/api/sites/{site.id}/uploads", headers=headers)).json()
    assert len(uploads) == 1
    assert uploads[0]["id"] == result["uploadId"]
    assert uploads[0]["uploadedByUserName"] == "Olive"
    assert uploads[0]["validationStatus"] == "Validated"


async def test_rejected_upload_returns_400_with_result(client, session, site):
    await make_schema(session, site)
    operator = await make_user(session, "operator@example.com")
    await grant(session, operator, site, SiteRole.OPERATOR)
    future = (datetime.now(timezone.utc) + timedelta(days=3)).date().isoformat()

    response = await client.post(
        f"/api/sites/{site.id}/data", json=_upload_body(future), headers=auth_headers(operator)
    )

    assert response.status_code == 400
    result = response.json()
    assert result["success"] is False
    assert result["uploadId"] is not None
    assert result["errors"][0]["field"] == "date"
    assert result["errors"][0]["rowIndex"] == 0


async def test_admin_upload_to_missing_site_is_404(client, session):
    admin = await make_user(session, "admin@example.com", role=UserRole.ADMIN)

    response = await client.post(
        "/api/sites/999/data", json=_upload_body("2025-06-01"), headers=auth_headers(admin)
    )

    assert response.status_code == 404


async def test_empty_upload_is_rejected(client, session, site):
    admin = await make_user(session, "admin@example.com", role=UserRole.ADMIN)

    response = await client.post(
        f"/api/sites/{site.id}/data", json={"rows": []}, headers=auth_headers(admin)
    )

    assert response.status_code == 422


async def test_models_listed_by_version(client, session, site):
    await make_model(session, site, version=1.0, active=False)
    await make_model(session, site, version=2.0)
    viewer = await make_user(session, "viewer@example.com")
    await grant(session, viewer, site, SiteRole.VIEWER)

    models = (await client.get(f"/api/sites/{site.id}/models", headers=auth_headers(viewer))).json()

    assert [m["versionNumber"] for m in models] == [2.0, 1.0]
    assert [m["isActive"] for m in models] == [True, False]


async def test_site_users_requires_site_admin(client, session, site):
    operator = await make_user(session, "operator@example.com")
    site_admin = await make_user(session, "siteadmin@example.com")
    await grant(session, operator, site, SiteRole.OPERATOR)
    await grant(session, site_admin, site, SiteRole.SITE_ADMIN)

    denied = await client.get(f"/api/sites/{site.id}/users", headers=auth_headers(operator))
    allowed = await client.get(f"/api/sites/{site.id}/users", headers=auth_headers(site_admin))

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert {u["email"]: u["roleOnSite"] for u in allowed.json()} == {
        "operator@example.com": "Operator",
        "siteadmin@example.com": "SiteAdmin",
    }


# ---- /internal ----

async def test_internal_upload_runs_as_system(client, site):
    response = await client.post(
        f"/internal/sites/{site.id}/data",
        params={"fileName": "nightly-import.csv"},
        json=_upload_body("2025-06-01"),
    )

    assert response.status_code == 200
    assert response.json()["rowsInserted"] == 1


async def test_internal_upload_to_missing_site(client):
    response = await client.post("/internal/sites/999/data", json=_upload_body("2025-06-01"))

    assert response.status_code == 404


async def test_internal_api_key_is_enforced(client, site, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_API_KEY", "s3cret")
    url = f"/internal/sites/{site.id}/data"

    denied = await client.post(url, json=_upload_body("2025-06-01"))
    allowed = await client.post(url, json=_upload_body("2025-06-01"), headers={"X-API-Key": "s3cret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
