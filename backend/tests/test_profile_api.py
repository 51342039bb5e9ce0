from memberbase.core.errors import UpstreamError


def test_profile_requires_authentication(client):
    assert client.get("/profile").status_code == 401


def test_get_profile_creates_it_on_first_read(client, bearer, repo):
    resp = client.get("/profile", headers=bearer("u1", "one@example.com"))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["id"] == "u1"
    assert data["email"] == "one@example.com"
    assert data["first_name"] is None
    assert "stripe_customer_id" not in data


def test_update_profile_changes_only_sent_fields(client, bearer, repo):
    repo.ensure_profile("u1", "u1@example.com")
    repo.update_profile("u1", {"first_name": "Ada", "last_name": "Lovelace"})

    resp = client.put("/profile", headers=bearer("u1"), json={"first_name": "Augusta"})

    assert resp.status_code == 200
    assert resp.json()["data"]["first_name"] == "Augusta"
    assert repo.get_profile("u1")["last_name"] == "Lovelace"


def test_update_profile_clears_field_with_null(client, bearer, repo):
    repo.ensure_profile("u1", "u1@example.com")
    repo.update_profile("u1", {"first_name": "Ada"})

    client.put("/profile", headers=bearer("u1"), json={"first_name": None})

    assert repo.get_profile("u1")["first_name"] is None


def test_update_profile_validates_length(client, bearer):
    resp = client.put("/profile", headers=bearer("u1"), json={"last_name": "x" * 51})

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_delete_profile_removes_account_and_member_data(client, bearer, repo, tier_ids, auth, session):
    repo.add_member("u1", tier_ids["premium"])
    repo.make_admin("u1")

    resp = client.delete("/profile", headers=bearer("u1"))

    assert resp.status_code == 200
    assert resp.json()["message"] == "Account deleted successfully"
    assert auth.deleted == ["u1"]
    assert repo.get_profile("u1") is None
    assert repo.get_membership("u1") is None
    assert not repo.is_admin("u1")
    assert session.commits == 1


def test_delete_profile_keeps_changes_uncommitted_when_provider_fails(client, bearer, repo, tier_ids, auth, session):
    repo.add_member("u1", tier_ids["free"])
    auth.delete_error = UpstreamError("Account deletion failed")

    resp = client.delete("/profile", headers=bearer("u1"))

    assert resp.status_code == 500
    assert resp.json()["code"] == "UPSTREAM_ERROR"
    assert session.commits == 0


def test_delete_missing_profile_is_404(client, bearer, auth):
    resp = client.delete("/profile", headers=bearer("ghost"))

    assert resp.status_code == 404
    assert auth.deleted == []
