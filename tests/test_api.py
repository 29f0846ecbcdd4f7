"""Test the HTTP surface end to end."""
import json

from fastapi import status

from app.errors import UploadFailure

PHOTO = b"\xff\xd8\xff\xe0 carnival costume"


def auth(uid):
    return {"Authorization": f"Bearer {uid}"}


def submit(client, uid="u1", data=PHOTO, filename="carnival.jpg", mime="image/jpeg", **metadata):
    metadata.setdefault("content_type", "image")
    return client.post(
        "/v1/memories",
        headers=auth(uid),
        files={"file": (filename, data, mime)},
        data={"metadata": json.dumps(metadata)},
    )


def test_submit_memory(client, community_setup):
    """Test upload returns the canonical record with defaults filled in."""
    response = submit(client, tags=["Carnival"])
    assert response.status_code == status.HTTP_201_CREATED

    body = response.json()
    assert body["owner_id"] == "u1"
    assert body["title"] == "carnival.jpg"
    assert body["mime_type"] == "image/jpeg"
    assert body["access_level"] == "private"
    assert body["is_public"] is False
    assert body["tags"] == ["carnival"]
    assert body["locator"].endswith(body["content_hash"])


def test_submit_requires_authentication(client, community_setup):
    response = client.post(
        "/v1/memories",
        files={"file": ("a.txt", b"text", "text/plain")},
        data={"metadata": json.dumps({"content_type": "document"})},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"


def test_malformed_authorization_header(client, community_setup):
    response = client.get("/v1/memories", headers={"Authorization": "Basic dTE6cHc="})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_submit_invalid_metadata_json(client, community_setup):
    response = client.post(
        "/v1/memories",
        headers=auth("u1"),
        files={"file": ("a.jpg", PHOTO, "image/jpeg")},
        data={"metadata": "{not json"},
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_submit_unsupported_content_type(client, community_setup):
    response = submit(client, content_type="hologram", mime="application/octet-stream")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["code"] == "UNSUPPORTED_CONTENT_TYPE"


def test_submit_upload_failure_is_generic(client, content_store, community_setup):
    """Test upstream detail never reaches the caller."""
    content_store.store_error = UploadFailure("pinata 500: secret internals")
    response = submit(client)

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    error = response.json()["error"]
    assert error["code"] == "UPLOAD_FAILURE"
    assert "secret internals" not in json.dumps(error)


def test_private_memory_access(client, community_setup):
    memory_id = submit(client).json()["id"]

    assert client.get(f"/v1/memories/{memory_id}", headers=auth("u1")).status_code == status.HTTP_200_OK
    assert client.get(f"/v1/memories/{memory_id}", headers=auth("u2")).status_code == status.HTTP_403_FORBIDDEN
    assert client.get(f"/v1/memories/{memory_id}").status_code == status.HTTP_403_FORBIDDEN


def test_denied_and_missing_responses_match(client, community_setup):
    """Test a private artifact and a nonexistent id produce the same error body."""
    memory_id = submit(client).json()["id"]

    private = client.get(f"/v1/memories/{memory_id}", headers=auth("u2"))
    missing = client.get("/v1/memories/00000000-0000-0000-0000-000000000000", headers=auth("u2"))

    assert private.status_code == missing.status_code == status.HTTP_403_FORBIDDEN
    for key in ("code", "message"):
        assert private.json()["error"][key] == missing.json()["error"][key]
    assert "details" not in private.json()["error"]


def test_public_memory_readable_anonymously(client, community_setup):
    memory_id = submit(client, access_level="public").json()["id"]
    response = client.get(f"/v1/memories/{memory_id}")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["is_public"] is True


def test_community_memory_access(client, community_setup):
    memory_id = submit(client, access_level="community", associated_communities=["c1"]).json()["id"]

    assert client.get(f"/v1/memories/{memory_id}", headers=auth("u2")).status_code == status.HTTP_200_OK
    assert client.get(f"/v1/memories/{memory_id}", headers=auth("u3")).status_code == status.HTTP_403_FORBIDDEN


def test_download_content(client, community_setup):
    created = submit(client).json()
    response = client.get(f"/v1/memories/{created['id']}/content", headers=auth("u1"))

    assert response.status_code == status.HTTP_200_OK
    assert response.content == PHOTO
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["x-content-hash"] == created["content_hash"]
    assert response.headers["etag"] == f'"{created["content_hash"]}"'


def test_patch_immutable_field(client, community_setup):
    memory_id = submit(client).json()["id"]
    response = client.patch(f"/v1/memories/{memory_id}", headers=auth("u1"), json={"content_hash": "QmForged"})

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["code"] == "IMMUTABLE_FIELD_VIOLATION"


def test_patch_by_owner(client, community_setup):
    memory_id = submit(client).json()["id"]
    response = client.patch(
        f"/v1/memories/{memory_id}",
        headers=auth("u1"),
        json={"title": "Carnival, Port of Spain", "access_level": "public"},
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["title"] == "Carnival, Port of Spain"
    assert response.json()["is_public"] is True


def test_patch_by_non_owner(client, community_setup):
    memory_id = submit(client, access_level="public").json()["id"]
    response = client.patch(f"/v1/memories/{memory_id}", headers=auth("u2"), json={"title": "Mine"})
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_list_memories_paginates(client, community_setup):
    for i in range(3):
        submit(client, data=PHOTO + bytes([i]), access_level="public")

    first = client.get("/v1/memories", params={"limit": 2})
    assert first.status_code == status.HTTP_200_OK
    assert len(first.json()["items"]) == 2
    cursor = first.json()["next_cursor"]
    assert cursor

    second = client.get("/v1/memories", params={"limit": 2, "cursor": cursor})
    assert len(second.json()["items"]) == 1
    assert second.json()["next_cursor"] is None

    seen = {item["id"] for item in first.json()["items"] + second.json()["items"]}
    assert len(seen) == 3


def test_list_filters_hide_private(client, community_setup):
    submit(client)
    submit(client, data=b"other", access_level="public")

    response = client.get("/v1/memories", headers=auth("u2"))
    assert [item["access_level"] for item in response.json()["items"]] == ["public"]


def test_list_rejects_bad_cursor(client, community_setup):
    response = client.get("/v1/memories", params={"cursor": "bm90IGpzb24="})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"]["code"] == "INVALID_CURSOR"


def test_register_and_fetch_profile(client, community_setup):
    payload = {
        "email": "Amara@Example.org",
        "username": "amara",
        "full_name": "Amara Okafor",
        "cultural_background": ["Igbo"],
        "location": {"country": "Nigeria", "city": "Enugu"},
    }
    response = client.post("/v1/users", headers=auth("firebase-amara"), json=payload)
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["email"] == "amara@example.org"
    assert response.json()["cultural_background"] == ["igbo"]

    me = client.get("/v1/users/me", headers=auth("firebase-amara"))
    assert me.status_code == status.HTTP_200_OK
    assert me.json()["id"] == "firebase-amara"
    assert me.json()["community_memberships"] == []

    again = client.post("/v1/users", headers=auth("firebase-amara"), json=payload)
    assert again.status_code == status.HTTP_409_CONFLICT


def test_profile_lists_memberships(client, community_setup):
    response = client.get("/v1/users/me", headers=auth("u2"))
    assert response.json()["community_memberships"] == ["c1"]


def test_profile_requires_registration(client, community_setup):
    assert client.get("/v1/users/me", headers=auth("unknown")).status_code == status.HTTP_404_NOT_FOUND
    assert client.get("/v1/users/me").status_code == status.HTTP_401_UNAUTHORIZED


def test_get_community(client, community_setup):
    response = client.get("/v1/communities/c1")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["member_count"] == 1
    assert client.get("/v1/communities/nowhere").status_code == status.HTTP_404_NOT_FOUND


def test_request_id_propagated(client, community_setup):
    response = client.get("/healthz/live", headers={"X-Request-ID": "req-123"})
    assert response.status_code == status.HTTP_200_OK
    assert response.headers["x-request-id"] == "req-123"


def test_health_reports_content_store_backend(client):
    response = client.get("/healthz")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["content_store"]["backend"] == "in_memory"


def test_patch_with_returned_tags_round_trips(client, community_setup):
    """Test tags fetched over HTTP can be sent back and filtered on unchanged."""
    created = submit(client, access_level="public", tags=["Food & Drink"]).json()
    assert created["tags"] == ["food & drink"]

    fetched = client.get(f"/v1/memories/{created['id']}", headers=auth("u1")).json()
    response = client.patch(f"/v1/memories/{created['id']}", headers=auth("u1"), json={"tags": fetched["tags"]})
    assert response.json()["tags"] == ["food & drink"]

    listed = client.get("/v1/memories", params={"tag": "Food & Drink"})
    assert [item["id"] for item in listed.json()["items"]] == [created["id"]]
