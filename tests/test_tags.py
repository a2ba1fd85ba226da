KEY_1 = {"X-API-Key": "key_1"}
KEY_2 = {"X-API-Key": "key_2"}


def _create(client, owner_id, headers, title, tags, **extra):
    response = client.post(
        f"/api/v1/owners/{owner_id}/notes",
        headers=headers,
        json={"title": title, "body": title.lower(), "tags": tags, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


def _tags(client, owner_id, headers):
    response = client.get(f"/api/v1/owners/{owner_id}/tags", headers=headers)
    assert response.status_code == 200
    return response.json()


def test_same_tag_name_is_separate_per_owner(client):
    one = _create(client, 1, KEY_1, "One", ["alpha"])
    two = _create(client, 2, KEY_2, "Two", ["alpha"])

    tags_1 = _tags(client, 1, KEY_1)
    tags_2 = _tags(client, 2, KEY_2)
    assert [(tag["name"], tag["noteCount"]) for tag in tags_1] == [("alpha", 1)]
    assert [(tag["name"], tag["noteCount"]) for tag in tags_2] == [("alpha", 1)]
    assert tags_1[0]["id"] != tags_2[0]["id"]
    assert one["tags"][0]["id"] == tags_1[0]["id"]
    assert two["tags"][0]["id"] == tags_2[0]["id"]


def test_tags_ordered_by_usage(client):
    _create(client, 1, KEY_1, "A", ["common", "rare"])
    _create(client, 1, KEY_1, "B", ["common"])
    names = [tag["name"] for tag in _tags(client, 1, KEY_1)]
    assert names == ["common", "rare"]


def test_existing_tag_is_reused(client):
    first = _create(client, 1, KEY_1, "A", ["reuse"])
    second = _create(client, 1, KEY_1, "B", ["reuse", "reuse"])
    assert first["tags"][0]["id"] == second["tags"][0]["id"]
    assert len(second["tags"]) == 1


def test_rename_conflict_returns_409(client):
    _create(client, 1, KEY_1, "A", ["left", "right"])
    tags = {tag["name"]: tag["id"] for tag in _tags(client, 1, KEY_1)}
    response = client.put(
        f"/api/v1/owners/1/tags/{tags['left']}", headers=KEY_1, json={"name": "right"}
    )
    assert response.status_code == 409

    response = client.put(
        f"/api/v1/owners/1/tags/{tags['left']}",
        headers=KEY_1,
        json={"name": "center", "color": "#000000"},
    )
    assert response.status_code == 200
    assert response.json()["name"] == "center"
    assert response.json()["color"] == "#000000"


def test_other_owner_cannot_touch_tag(client):
    _create(client, 1, KEY_1, "A", ["private"])
    tag_id = _tags(client, 1, KEY_1)[0]["id"]
    response = client.put(
        f"/api/v1/owners/2/tags/{tag_id}", headers=KEY_2, json={"name": "stolen"}
    )
    assert response.status_code == 404
    response = client.delete(f"/api/v1/owners/2/tags/{tag_id}", headers=KEY_2)
    assert response.status_code == 404


def test_delete_tag_unlinks_notes(client):
    note = _create(client, 1, KEY_1, "A", ["temp"])
    tag_id = note["tags"][0]["id"]
    response = client.delete(f"/api/v1/owners/1/tags/{tag_id}", headers=KEY_1)
    assert response.status_code == 200
    refreshed = client.get(f"/api/v1/owners/1/notes/{note['id']}", headers=KEY_1).json()
    assert refreshed["tags"] == []


def test_merge_moves_notes_to_target(client):
    a = _create(client, 1, KEY_1, "A", ["old"])
    b = _create(client, 1, KEY_1, "B", ["old", "new"])
    tags = {tag["name"]: tag["id"] for tag in _tags(client, 1, KEY_1)}

    response = client.post(
        f"/api/v1/owners/1/tags/{tags['old']}/merge",
        headers=KEY_1,
        json={"targetId": tags["new"]},
    )
    assert response.status_code == 200
    assert [(tag["name"], tag["noteCount"]) for tag in _tags(client, 1, KEY_1)] == [("new", 2)]

    page = client.get("/api/v1/owners/1/notes", headers=KEY_1, params={"tags": "new"}).json()
    assert {item["id"] for item in page["items"]} == {a["id"], b["id"]}


def test_merge_into_itself_is_rejected(client):
    note = _create(client, 1, KEY_1, "A", ["solo"])
    tag_id = note["tags"][0]["id"]
    response = client.post(
        f"/api/v1/owners/1/tags/{tag_id}/merge", headers=KEY_1, json={"targetId": tag_id}
    )
    assert response.status_code == 404


def test_resources_link_only_for_owner(client):
    mine = client.post(
        "/api/v1/owners/1/resources",
        headers=KEY_1,
        json={"filename": "a.png", "storagePath": "/2024/a.png", "mimeType": "image/png"},
    )
    assert mine.status_code == 201
    mine = mine.json()
    assert mine["storagePath"] == "2024/a.png"
    assert mine["url"] == "/uploads/2024/a.png"

    theirs = client.post(
        "/api/v1/owners/2/resources",
        headers=KEY_2,
        json={"filename": "b.png", "storagePath": "b.png"},
    ).json()

    note = _create(
        client, 1, KEY_1, "With files", [], resourceIds=[mine["id"], theirs["id"], 999]
    )
    assert [res["id"] for res in note["resources"]] == [mine["id"]]

    listing = client.get("/api/v1/owners/1/resources", headers=KEY_1).json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == mine["id"]


def test_deleting_resource_unlinks_it(client):
    resource = client.post(
        "/api/v1/owners/1/resources",
        headers=KEY_1,
        json={"filename": "c.txt", "storagePath": "c.txt"},
    ).json()
    note = _create(client, 1, KEY_1, "Linked", [], resourceIds=[resource["id"]])
    response = client.delete(f"/api/v1/owners/1/resources/{resource['id']}", headers=KEY_1)
    assert response.status_code == 200
    refreshed = client.get(f"/api/v1/owners/1/notes/{note['id']}", headers=KEY_1).json()
    assert refreshed["resources"] == []
    response = client.delete(f"/api/v1/owners/1/resources/{resource['id']}", headers=KEY_1)
    assert response.status_code == 404


def test_blank_tag_name_is_rejected(client):
    note = _create(client, 1, KEY_1, "A", ["named"])
    tag_id = note["tags"][0]["id"]
    response = client.put(
        f"/api/v1/owners/1/tags/{tag_id}", headers=KEY_1, json={"name": "   "}
    )
    assert response.status_code == 400

    response = client.put(
        f"/api/v1/owners/1/tags/{tag_id}", headers=KEY_1, json={"name": "  trimmed "}
    )
    assert response.status_code == 200
    assert response.json()["name"] == "trimmed"


def test_tag_id_beyond_integer_range_returns_400(client):
    note = _create(client, 1, KEY_1, "A", ["edge"])
    tag_id = note["tags"][0]["id"]
    huge = 10**20
    response = client.delete(f"/api/v1/owners/1/tags/{huge}", headers=KEY_1)
    assert response.status_code == 400
    response = client.post(
        f"/api/v1/owners/1/tags/{tag_id}/merge", headers=KEY_1, json={"targetId": huge}
    )
    assert response.status_code == 400
