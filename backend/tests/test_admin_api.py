from datetime import datetime, timezone

import pytest

PAST = datetime(2020, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def admin_headers(repo, bearer):
    repo.make_admin("boss")
    return bearer("boss")


def test_admin_routes_need_admin_role(client, bearer, repo, tier_ids):
    repo.add_member("u1", tier_ids["free"])

    resp = client.get("/admin/tiers", headers=bearer("u1"))

    assert resp.status_code == 403
    assert resp.json()["code"] == "ADMIN_REQUIRED"


def test_tier_crud_with_soft_delete(client, admin_headers, repo):
    created = client.post(
        "/admin/tiers",
        headers=admin_headers,
        json={"name": "team", "display_name": "Team", "price_monthly": 49, "sort_order": 5},
    )
    assert created.status_code == 201
    tier_id = created.json()["data"]["id"]

    duplicate = client.post("/admin/tiers", headers=admin_headers, json={"name": "team", "display_name": "Again"})
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "STATE_CONFLICT"

    updated = client.put(f"/admin/tiers/{tier_id}", headers=admin_headers, json={"display_name": "Teams"})
    assert updated.json()["data"]["display_name"] == "Teams"
    assert updated.json()["data"]["price_monthly"] == 49

    removed = client.delete(f"/admin/tiers/{tier_id}", headers=admin_headers)
    assert removed.json()["data"]["is_active"] is False
    assert tier_id in repo.tiers

    listed = client.get("/admin/tiers", headers=admin_headers).json()["data"]
    assert any(t["id"] == tier_id and not t["is_active"] for t in listed)


def test_tier_name_must_be_a_slug(client, admin_headers):
    resp = client.post("/admin/tiers", headers=admin_headers, json={"name": "Team Plan", "display_name": "Team"})

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_unknown_tier_is_404(client, admin_headers):
    resp = client.put("/admin/tiers/tier-missing", headers=admin_headers, json={"display_name": "X"})

    assert resp.status_code == 404
    assert resp.json()["error"] == "Tier not found"


def test_binding_limit_from_string(client, admin_headers, repo, tier_ids):
    feature_id = repo.feature_id("api_integrations")

    resp = client.put(
        f"/admin/tiers/{tier_ids['premium']}/features/{feature_id}",
        headers=admin_headers,
        json={"value": "25"},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["value"] == 25
    assert data["usage_limit"] == 25
    assert data["period_type"] == "lifetime"


def test_binding_boolean_defaults_to_no_period(client, admin_headers, repo, tier_ids):
    feature_id = repo.feature_id("ai_assistant")

    resp = client.put(
        f"/admin/tiers/{tier_ids['free']}/features/{feature_id}",
        headers=admin_headers,
        json={"value": "true"},
    )

    data = resp.json()["data"]
    assert data["value"] is True
    assert data["usage_limit"] is None
    assert data["period_type"] == "none"


def test_binding_monthly_period_and_removal(client, admin_headers, repo, tier_ids):
    feature_id = repo.feature_id("api_integrations")
    path = f"/admin/tiers/{tier_ids['premium']}/features/{feature_id}"

    saved = client.put(path, headers=admin_headers, json={"value": 50, "period_type": "monthly"})
    assert saved.json()["data"]["period_type"] == "monthly"

    assert client.delete(path, headers=admin_headers).status_code == 200
    assert client.delete(path, headers=admin_headers).status_code == 404
    keys = {f["key"] for f in client.get(f"/admin/tiers/{tier_ids['premium']}/features", headers=admin_headers).json()["data"]}
    assert "api_integrations" not in keys


def test_feature_crud(client, admin_headers, repo):
    created = client.post(
        "/admin/features",
        headers=admin_headers,
        json={"key": "exports", "name": "Exports", "feature_type": "limit", "default_value": "3"},
    )
    assert created.status_code == 201
    feature = created.json()["data"]
    assert feature["default_value"] == 3

    updated = client.put(f"/admin/features/{feature['id']}", headers=admin_headers, json={"default_value": "-1"})
    assert updated.json()["data"]["default_value"] == -1

    removed = client.delete(f"/admin/features/{feature['id']}", headers=admin_headers)
    assert removed.json()["data"]["is_active"] is False
    assert repo.features[feature["id"]]["is_active"] is False


def test_override_user_tier(client, admin_headers, repo, tier_ids):
    repo.add_member("u1", tier_ids["free"])

    resp = client.post("/admin/users/u1/tier", headers=admin_headers, json={"tier_id": tier_ids["pro"]})

    assert resp.status_code == 200
    assert resp.json()["data"]["tier_name"] == "pro"
    assert repo.audit[-1]["data"]["source"] == "admin:boss"
    assert repo.get_usage("u1", "api_integrations")["usage_limit"] == -1

    usage = client.get("/admin/users/u1/usage", headers=admin_headers).json()["data"]
    assert usage["tier_name"] == "pro"
    assert {f["feature_key"] for f in usage["features"]} == {"api_integrations", "cloud_storage", "team_collaboration"}


def test_override_for_unknown_user(client, admin_headers, tier_ids):
    resp = client.post("/admin/users/nobody/tier", headers=admin_headers, json={"tier_id": tier_ids["pro"]})

    assert resp.status_code == 404


def test_cron_expire_trials(client, admin_headers, repo, tier_ids):
    repo.add_member("u1", tier_ids["trial"], status="trial", has_used_trial=True, trial_ends_at=PAST)

    resp = client.post("/admin/cron/expire-trials", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["data"] == {"expired": 1, "errors": 0}
    assert repo.get_membership("u1")["tier_name"] == "free"


def test_cron_reset_usage(client, admin_headers, repo, tier_ids):
    repo.add_member("u1", tier_ids["premium"])
    repo.save_usage(
        {
            "user_id": "u1",
            "feature_key": "api_integrations",
            "current_usage": 9,
            "usage_limit": 10,
            "period_type": "daily",
            "period_start": PAST,
            "period_end": PAST,
        }
    )

    resp = client.post("/admin/cron/reset-usage", headers=admin_headers)

    assert resp.json()["data"] == {"reset": 1}
    assert repo.get_usage("u1", "api_integrations")["current_usage"] == 0


def test_list_admins(client, admin_headers):
    admins = client.get("/admin/admins", headers=admin_headers).json()["data"]

    assert admins == [{"user_id": "boss", "email": "boss@example.com", "role": "admin"}]


@pytest.fixture
def super_headers(repo, bearer):
    repo.make_admin("root", role="super_admin")
    return bearer("root")


def test_adding_admins_needs_super_admin(client, admin_headers, repo):
    repo.ensure_profile("u2", "u2@example.com")

    resp = client.post("/admin/admins", headers=admin_headers, json={"user_id": "u2"})

    assert resp.status_code == 403
    assert resp.json()["code"] == "SUPER_ADMIN_REQUIRED"
    assert not repo.is_admin("u2")


def test_super_admin_grants_admin_role(client, super_headers, repo, session):
    repo.ensure_profile("u2", "u2@example.com")

    resp = client.post("/admin/admins", headers=super_headers, json={"user_id": "u2", "role": "super_admin"})

    assert resp.status_code == 201
    assert resp.json()["data"] == {"user_id": "u2", "email": "u2@example.com", "role": "super_admin"}
    assert repo.admins["u2"]["created_by"] == "root"
    assert session.commits == 1


def test_grant_rejects_existing_admin_and_unknown_user(client, super_headers, repo):
    repo.make_admin("u2")

    again = client.post("/admin/admins", headers=super_headers, json={"user_id": "u2"})
    assert again.status_code == 400
    assert again.json()["code"] == "STATE_CONFLICT"

    ghost = client.post("/admin/admins", headers=super_headers, json={"user_id": "ghost"})
    assert ghost.status_code == 404


def test_grant_rejects_unknown_role(client, super_headers, repo):
    repo.ensure_profile("u2", "u2@example.com")

    resp = client.post("/admin/admins", headers=super_headers, json={"user_id": "u2", "role": "owner"})

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_super_admin_revokes_admin(client, super_headers, repo):
    repo.make_admin("u2")

    resp = client.delete("/admin/admins/u2", headers=super_headers)

    assert resp.status_code == 200
    assert not repo.is_admin("u2")
    assert client.delete("/admin/admins/u2", headers=super_headers).status_code == 404


def test_super_admin_cannot_revoke_self(client, super_headers, repo):
    resp = client.delete("/admin/admins/root", headers=super_headers)

    assert resp.status_code == 400
    assert resp.json()["error"] == "Cannot remove yourself as admin"
    assert repo.is_admin("root")
