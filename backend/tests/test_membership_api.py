from memberbase.core.config import settings


def test_health_and_security_headers(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert "Strict-Transport-Security" in resp.headers


def test_membership_requires_bearer_token(client):
    resp = client.get("/membership")

    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Authentication required", "code": "UNAUTHORIZED"}


def test_unknown_token_is_rejected(client):
    resp = client.get("/membership", headers={"Authorization": "Bearer nope"})

    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid or expired token"


def test_first_read_provisions_default_membership(client, bearer, repo, session):
    resp = client.get("/membership", headers=bearer("u1", "u1@example.com"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["user_id"] == "u1"
    assert data["tier_name"] == "free"
    assert data["status"] == "active"
    assert data["has_used_trial"] is False
    assert repo.get_profile("u1")["email"] == "u1@example.com"
    assert session.commits >= 1

    again = client.get("/membership", headers=bearer("u1"))
    assert again.json()["data"]["id"] == data["id"]


def test_features_snapshot(client, bearer, repo, tier_ids):
    repo.add_member("u1", tier_ids["premium"])

    resp = client.get("/membership/features", headers=bearer("u1"))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["tier_name"] == "premium"
    assert data["membership_status"] == "active"
    assert data["features"]["ai_assistant"] is True
    assert data["features"]["api_integrations"] == 10
    assert data["features"]["team_collaboration"] == 5


def test_check_feature_and_limit(client, bearer, repo, tier_ids):
    repo.add_member("u1", tier_ids["free"])
    headers = bearer("u1")

    assistant = client.get("/membership/check-feature/ai_assistant", headers=headers).json()["data"]
    storage = client.get("/membership/check-feature/cloud_storage", headers=headers).json()["data"]
    limit = client.get("/membership/feature-limit/cloud_storage", headers=headers).json()["data"]
    unknown = client.get("/membership/feature-limit/teleportation", headers=headers).json()["data"]

    assert assistant == {"feature_key": "ai_assistant", "has_feature": False}
    assert storage == {"feature_key": "cloud_storage", "has_feature": True}
    assert limit == {"feature_key": "cloud_storage", "limit": 500}
    assert unknown == {"feature_key": "teleportation", "limit": 0}


def test_trial_lifecycle_over_http(client, bearer, tier_ids):
    headers = bearer("u1")

    status = client.get("/membership/trial/status", headers=headers).json()["data"]
    assert status["can_start_trial"] is True
    assert status["is_on_trial"] is False

    started = client.post("/membership/trial/start", headers=headers)
    assert started.status_code == 200
    assert started.json()["data"]["tier_name"] == "trial"
    assert started.json()["message"] == "Trial started. Enjoy 14 days of full access."

    status = client.get("/membership/trial/status", headers=headers).json()["data"]
    assert status["is_on_trial"] is True
    assert status["days_remaining"] == 14
    assert status["can_start_trial"] is False

    again = client.post("/membership/trial/start", headers=headers)
    assert again.status_code == 400
    assert again.json()["code"] == "STATE_CONFLICT"

    to_free = client.post("/membership/trial/convert", headers=headers, json={"tier_id": tier_ids["free"]})
    assert to_free.status_code == 400
    assert to_free.json()["code"] == "STATE_CONFLICT"

    converted = client.post(
        "/membership/trial/convert",
        headers=headers,
        json={"tier_id": tier_ids["pro"], "billing_cycle": "yearly"},
    )
    assert converted.status_code == 200
    assert converted.json()["data"]["tier_name"] == "pro"
    assert converted.json()["data"]["billing_cycle"] == "yearly"


def test_convert_requires_tier_id(client, bearer):
    resp = client.post("/membership/trial/convert", headers=bearer("u1"), json={})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"][0]["field"] == "tier_id"


def test_convert_rejects_unknown_cycle(client, bearer, tier_ids):
    resp = client.post(
        "/membership/trial/convert",
        headers=bearer("u1"),
        json={"tier_id": tier_ids["pro"], "billing_cycle": "weekly"},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_validation_details_hidden_in_production(client, bearer, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "prod")

    resp = client.post("/membership/trial/convert", headers=bearer("u1"), json={})

    assert resp.status_code == 400
    assert "details" not in resp.json()


def test_denial_details_stay_visible_in_production(client, bearer, repo, tier_ids, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "prod")
    repo.add_member("u1", tier_ids["free"])

    resp = client.get("/gated/analytics", headers=bearer("u1"))

    assert resp.json()["details"] == {"feature": "analytics_dashboard"}


def test_change_tier_is_hidden_outside_dev(client, bearer, tier_ids):
    resp = client.post("/membership/change-tier", headers=bearer("u1"), json={"tier_id": tier_ids["pro"]})

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Not found"}


def test_change_tier_in_dev(client, bearer, repo, tier_ids, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "dev")

    resp = client.post("/membership/change-tier", headers=bearer("u1"), json={"tier_id": tier_ids["pro"]})

    assert resp.status_code == 200
    assert resp.json()["data"]["tier_name"] == "pro"
    assert repo.get_usage("u1", "api_integrations")["usage_limit"] == -1
    assert repo.audit[-1]["data"]["source"] == "dev"


def test_usage_endpoints(client, bearer):
    headers = bearer("u1")
    client.post("/membership/trial/start", headers=headers)

    summary = client.get("/membership/usage", headers=headers)
    single = client.get("/membership/usage/api_integrations", headers=headers)
    missing = client.get("/membership/usage/ai_assistant", headers=headers)

    assert summary.status_code == 200
    assert summary.json()["data"]["tier_name"] == "trial"
    keys = [f["feature_key"] for f in summary.json()["data"]["features"]]
    assert keys == ["api_integrations", "cloud_storage", "team_collaboration"]
    assert single.json()["data"]["usage_limit"] == 100
    assert single.json()["data"]["remaining"] == 100
    assert single.json()["data"]["percentage_used"] == 0
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_public_catalog_needs_no_auth(client):
    resp = client.get("/membership/public/tiers-with-features")

    assert resp.status_code == 200
    tiers = resp.json()["data"]
    assert [t["name"] for t in tiers] == ["trial", "free", "premium", "pro"]
    pro = tiers[-1]
    by_key = {f["key"]: f for f in pro["features"]}
    assert by_key["api_integrations"]["value"] == -1
    assert by_key["api_integrations"]["usage_limit"] == -1
    assert by_key["ai_assistant"]["usage_limit"] is None


def test_tier_listing_for_signed_in_user(client, bearer, tier_ids):
    headers = bearer("u1")

    tiers = client.get("/membership/tiers", headers=headers).json()["data"]
    features = client.get(f"/membership/tiers/{tier_ids['premium']}/features", headers=headers).json()["data"]

    assert {t["name"] for t in tiers} == {"trial", "free", "premium", "pro"}
    assert {f["key"] for f in features} == {
        "ai_assistant",
        "team_collaboration",
        "analytics_dashboard",
        "api_integrations",
        "cloud_storage",
    }
