NOTES_URL = "/api/v1/owners/{}/notes"


def test_missing_api_key_returns_401(client):
    response = client.post(NOTES_URL.format(1), json={"title": "Note", "body": "Body"})
    assert response.status_code == 401


def test_invalid_api_key_returns_401(client):
    response = client.post(
        NOTES_URL.format(1),
        headers={"X-API-Key": "bad_key"},
        json={"title": "Note", "body": "Body"},
    )
    assert response.status_code == 401


def test_owner_not_authorized_returns_403(client):
    response = client.post(
        NOTES_URL.format(2),
        headers={"X-API-Key": "key_1"},
        json={"title": "Note", "body": "Body"},
    )
    assert response.status_code == 403


def test_key_covering_several_owners(client):
    for owner_id in (1, 2):
        response = client.get(
            NOTES_URL.format(owner_id), headers={"X-API-Key": "key_admin"}
        )
        assert response.status_code == 200
        assert response.json()["ownerId"] == owner_id


def test_non_integer_owner_returns_400(client):
    response = client.get(NOTES_URL.format("abc"), headers={"X-API-Key": "key_1"})
    assert response.status_code == 400
