from app.services.profiles import upsert_profile


def _auth(provider, user_id):
    return {"Authorization": f"Bearer {provider.issue_token(user_id)}"}


def test_api_requires_authentication(client):
    response = client.get("/api/v1/bookmarks")
    assert response.status_code == 401
    assert response.get_json() == {"error": "authentication required"}

    response = client.get(
        "/api/v1/bookmarks", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


def test_api_bookmark_crud(client, provider, alice):
    auth = _auth(provider, alice.id)

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"title": "Example", "url": "https://example.com", "tags": ["a", " b", ""]},
    )
    assert response.status_code == 201
    created = response.get_json()
    assert created["user_id"] == alice.id
    assert created["tags"] == ["a", "b"]
    bookmark_id = created["id"]

    response = client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=auth)
    assert response.status_code == 200
    assert response.get_json()["title"] == "Example"

    response = client.put(
        f"/api/v1/bookmarks/{bookmark_id}",
        headers=auth,
        json={"title": "Renamed", "url": "https://example.com", "category": "Docs"},
    )
    assert response.status_code == 200
    assert response.get_json()["category"] == "Docs"

    response = client.get("/api/v1/bookmarks?q=renamed", headers=auth)
    assert [row["id"] for row in response.get_json()["items"]] == [bookmark_id]

    response = client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=auth)
    assert response.get_json() == {"deleted": True}

    response = client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=auth)
    assert response.status_code == 404


def test_api_validates_required_fields(client, provider, alice):
    auth = _auth(provider, alice.id)
    response = client.post("/api/v1/bookmarks", headers=auth, json={"url": "x"})
    assert response.status_code == 400
    assert response.get_json() == {"error": "title is required"}

    response = client.post("/api/v1/bookmarks", headers=auth, json={"title": "x"})
    assert response.get_json() == {"error": "url is required"}

    response = client.post("/api/v1/categories", headers=auth, json={})
    assert response.status_code == 400


def test_api_hides_other_owners_rows(client, provider, alice, bob):
    response = client.post(
        "/api/v1/bookmarks",
        headers=_auth(provider, alice.id),
        json={"title": "Mine", "url": "https://example.com"},
    )
    bookmark_id = response.get_json()["id"]

    bob_auth = _auth(provider, bob.id)
    assert client.get("/api/v1/bookmarks", headers=bob_auth).get_json()["items"] == []
    assert client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=bob_auth).status_code == 404
    response = client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=bob_auth)
    assert response.status_code == 404


def test_api_change_log_pages_by_cursor(client, provider, alice):
    auth = _auth(provider, alice.id)
    for index in range(3):
        client.post(
            "/api/v1/bookmarks",
            headers=auth,
            json={"title": f"b{index}", "url": f"https://{index}.example"},
        )

    response = client.get("/api/v1/bookmarks/changes?since=0&limit=2", headers=auth)
    page = response.get_json()
    assert [item["eventType"] for item in page["items"]] == ["insert", "insert"]
    assert [item["new"]["title"] for item in page["items"]] == ["b0", "b1"]

    response = client.get(
        f"/api/v1/bookmarks/changes?since={page['cursor']}", headers=auth
    )
    rest = response.get_json()
    assert [item["new"]["title"] for item in rest["items"]] == ["b2"]
    assert rest["cursor"] > page["cursor"]


def test_api_categories(client, provider, alice):
    auth = _auth(provider, alice.id)
    response = client.post(
        "/api/v1/categories", headers=auth, json={"name": "Reading", "color": "blue"}
    )
    assert response.status_code == 201
    category_id = response.get_json()["id"]

    response = client.put(
        f"/api/v1/categories/{category_id}", headers=auth, json={"name": "Later"}
    )
    assert response.get_json()["name"] == "Later"

    names = [row["name"] for row in client.get("/api/v1/categories", headers=auth).get_json()["items"]]
    assert names == ["Later"]

    response = client.delete(f"/api/v1/categories/{category_id}", headers=auth)
    assert response.status_code == 200
    response = client.delete(f"/api/v1/categories/{category_id}", headers=auth)
    assert response.status_code == 404


def test_api_profile(client, app, provider, alice):
    auth = _auth(provider, alice.id)
    assert client.get("/api/v1/me", headers=auth).status_code == 404

    with app.app_context():
        upsert_profile(alice)

    response = client.patch(
        "/api/v1/me",
        headers=auth,
        json={"theme": "dark", "email": "spoofed@example.com", "id": "other"},
    )
    assert response.status_code == 200
    profile = response.get_json()
    assert profile["theme"] == "dark"
    assert profile["email"] == "alice@example.com"
    assert profile["id"] == alice.id


def test_api_rejects_wrong_typed_fields(client, provider, alice):
    auth = _auth(provider, alice.id)
    cases = [
        ({"title": 123, "url": "https://x.example"}, "title must be a string"),
        ({"title": "t", "url": "https://x.example", "notes": ["n"]}, "notes must be a string"),
        ({"title": "t", "url": "https://x.example", "tags": 5}, "tags must be a string or a list of strings"),
        ({"title": "t", "url": "https://x.example", "tags": ["ok", 1]}, "tags must be a string or a list of strings"),
    ]
    for payload, message in cases:
        response = client.post("/api/v1/bookmarks", headers=auth, json=payload)
        assert response.status_code == 400
        assert response.get_json() == {"error": message}

    response = client.post("/api/v1/categories", headers=auth, json={"name": 7})
    assert response.status_code == 400
    assert response.get_json() == {"error": "name must be a string"}

    assert client.get("/api/v1/bookmarks", headers=auth).get_json()["items"] == []


def test_api_profile_rejects_wrong_typed_fields(client, app, provider, alice):
    auth = _auth(provider, alice.id)
    with app.app_context():
        upsert_profile(alice)

    response = client.patch("/api/v1/me", headers=auth, json={"bio": {"text": "hi"}})
    assert response.status_code == 400
    assert response.get_json() == {"error": "bio must be a string"}


def test_api_keeps_commas_inside_list_tags(client, provider, alice):
    response = client.post(
        "/api/v1/bookmarks",
        headers=_auth(provider, alice.id),
        json={"title": "t", "url": "https://x.example", "tags": ["a, b", "  ", " c "]},
    )
    assert response.status_code == 201
    assert response.get_json()["tags"] == ["a, b", "c"]


def test_api_rejects_non_web_urls(client, provider, alice):
    auth = _auth(provider, alice.id)
    for url in ("javascript:alert(1)", "ftp://files.example", "example.com"):
        response = client.post(
            "/api/v1/bookmarks", headers=auth, json={"title": "t", "url": url}
        )
        assert response.status_code == 400
        assert response.get_json() == {"error": "url must be an http or https URL"}
