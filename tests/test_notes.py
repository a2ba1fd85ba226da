from memostore.db import repo
from memostore.db.text_index import TextIndex

KEY_1 = {"X-API-Key": "key_1"}
KEY_2 = {"X-API-Key": "key_2"}


def _create(client, owner_id, headers, title, body, tags=(), **extra):
    response = client.post(
        f"/api/v1/owners/{owner_id}/notes",
        headers=headers,
        json={"title": title, "body": body, "tags": list(tags), **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


def _list(client, owner_id, headers, **params):
    response = client.get(
        f"/api/v1/owners/{owner_id}/notes", headers=headers, params=params
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_create_returns_assembled_note(client):
    note = _create(client, 1, KEY_1, " Groceries ", "milk and eggs", ["home", "todo"], kind="todo")
    assert note["ownerId"] == 1
    assert note["title"] == "Groceries"
    assert note["kind"] == "todo"
    assert note["pinned"] is False
    assert sorted(tag["name"] for tag in note["tags"]) == ["home", "todo"]
    assert all(tag["color"].startswith("#") for tag in note["tags"])
    assert note["resources"] == []
    assert note["createdAt"].endswith("Z")


def test_empty_note_is_rejected(client):
    response = client.post(
        "/api/v1/owners/1/notes", headers=KEY_1, json={"title": "  ", "body": ""}
    )
    assert response.status_code == 400


def test_oversized_title_is_rejected(client):
    response = client.post(
        "/api/v1/owners/1/notes", headers=KEY_1, json={"title": "x" * 201, "body": "b"}
    )
    assert response.status_code == 400


def test_notes_are_owner_scoped(client):
    mine = _create(client, 1, KEY_1, "Mine", "shared word")
    _create(client, 2, KEY_2, "Theirs", "shared word")

    titles = [item["title"] for item in _list(client, 1, KEY_1, q="shared")["items"]]
    assert titles == ["Mine"]

    response = client.get(f"/api/v1/owners/2/notes/{mine['id']}", headers=KEY_2)
    assert response.status_code == 404
    response = client.delete(f"/api/v1/owners/2/notes/{mine['id']}", headers=KEY_2)
    assert response.status_code == 404


def test_unowned_notes_are_visible_to_every_owner(client):
    legacy = repo.create_note(client.app.state.db, None, "Legacy", "from before owners")
    for owner_id, headers in ((1, KEY_1), (2, KEY_2)):
        ids = [item["id"] for item in _list(client, owner_id, headers)["items"]]
        assert legacy.id in ids
        response = client.get(f"/api/v1/owners/{owner_id}/notes/{legacy.id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["ownerId"] is None


def test_pinned_notes_come_first(client):
    first = _create(client, 1, KEY_1, "First", "a")
    pinned = _create(client, 1, KEY_1, "Pinned", "b", pinned=True)
    last = _create(client, 1, KEY_1, "Last", "c")
    ids = [item["id"] for item in _list(client, 1, KEY_1)["items"]]
    assert ids == [pinned["id"], last["id"], first["id"]]

    only_pinned = _list(client, 1, KEY_1, pinned="true")
    assert [item["id"] for item in only_pinned["items"]] == [pinned["id"]]


def test_tag_filter_returns_each_note_once(client):
    both = _create(client, 1, KEY_1, "Both", "x", ["red", "blue"])
    _create(client, 1, KEY_1, "Red", "y", ["red"])
    _create(client, 1, KEY_1, "None", "z")

    page = _list(client, 1, KEY_1, tags="red,blue")
    ids = [item["id"] for item in page["items"]]
    assert len(ids) == len(set(ids)) == 2
    assert both["id"] in ids
    assert page["total"] == 2

    single = _list(client, 1, KEY_1, tag="blue")
    assert [item["id"] for item in single["items"]] == [both["id"]]


def test_text_and_tag_filters_combine(client):
    target = _create(client, 1, KEY_1, "Target", "quarterly report", ["work"])
    _create(client, 1, KEY_1, "Other", "quarterly party", ["fun"])
    page = _list(client, 1, KEY_1, q="quarterly", tags="work")
    assert [item["id"] for item in page["items"]] == [target["id"]]


def test_broken_search_syntax_falls_back_to_literal(client):
    note = _create(client, 1, KEY_1, "Logic", "foo and bar")
    page = _list(client, 1, KEY_1, q="foo AND")
    assert [item["id"] for item in page["items"]] == [note["id"]]


def test_date_filters(client):
    _create(client, 1, KEY_1, "Now", "dated")
    assert _list(client, 1, KEY_1, **{"from": "2000-01-01"})["total"] == 1
    assert _list(client, 1, KEY_1, **{"to": "2000-01-01"})["total"] == 0
    inverted = _list(client, 1, KEY_1, **{"from": "2030-01-01", "to": "2000-01-01"})
    assert inverted["items"] == []
    assert _list(client, 1, KEY_1, **{"from": "garbage"})["total"] == 1


def test_limit_is_clamped(client):
    page = _list(client, 1, KEY_1, limit=10000)
    assert page["limit"] == 200
    page = _list(client, 1, KEY_1, limit=0, offset=-4)
    assert page["limit"] == 50
    assert page["offset"] == 0


def test_non_integer_limit_returns_400(client):
    response = client.get("/api/v1/owners/1/notes", headers=KEY_1, params={"limit": "many"})
    assert response.status_code == 400


def test_paging_reports_total(client):
    for idx in range(5):
        _create(client, 1, KEY_1, f"Note {idx}", "paged")
    page = _list(client, 1, KEY_1, limit=2, offset=2)
    assert page["total"] == 5
    assert len(page["items"]) == 2


def test_update_replaces_body_and_tags(client):
    note = _create(client, 1, KEY_1, "Draft", "old words", ["draft"])
    response = client.put(
        f"/api/v1/owners/1/notes/{note['id']}",
        headers=KEY_1,
        json={"title": "Final", "body": "new words", "tags": ["final"], "pinned": True},
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["title"] == "Final"
    assert updated["pinned"] is True
    assert [tag["name"] for tag in updated["tags"]] == ["final"]

    assert _list(client, 1, KEY_1, q="old")["total"] == 0
    assert _list(client, 1, KEY_1, q="new")["total"] == 1


def test_update_missing_note_returns_404(client):
    response = client.put(
        "/api/v1/owners/1/notes/999", headers=KEY_1, json={"title": "t", "body": "b"}
    )
    assert response.status_code == 404


def test_delete_removes_note_and_links(client):
    note = _create(client, 1, KEY_1, "Doomed", "bye", ["gone"])
    response = client.delete(f"/api/v1/owners/1/notes/{note['id']}", headers=KEY_1)
    assert response.status_code == 200
    assert response.json() == {"success": True}

    response = client.get(f"/api/v1/owners/1/notes/{note['id']}", headers=KEY_1)
    assert response.status_code == 404
    tags = client.get("/api/v1/owners/1/tags", headers=KEY_1).json()
    assert [(tag["name"], tag["noteCount"]) for tag in tags] == [("gone", 0)]


def test_owner_stats(client):
    _create(client, 1, KEY_1, "One", "a", ["x"], pinned=True)
    _create(client, 1, KEY_1, "Two", "b", ["x", "y"])
    response = client.get("/api/v1/owners/1/stats", headers=KEY_1)
    assert response.status_code == 200
    stats = response.json()
    assert stats["notesCount"] == 2
    assert stats["pinnedCount"] == 1
    assert stats["tagsCount"] == 2
    assert stats["notesCreated7d"] == 2
    assert stats["resourcesCount"] == 0


def test_offset_beyond_integer_range_is_clamped(client):
    _create(client, 1, KEY_1, "Only", "one")
    page = _list(client, 1, KEY_1, offset=10**20)
    assert page["offset"] == 2**63 - 1
    assert page["items"] == []
    assert page["total"] == 1


def test_note_id_beyond_integer_range_returns_400(client):
    huge = 10**20
    assert client.get(f"/api/v1/owners/1/notes/{huge}", headers=KEY_1).status_code == 400
    assert client.delete(f"/api/v1/owners/1/notes/{huge}", headers=KEY_1).status_code == 400
    response = client.post(
        "/api/v1/owners/1/notes", headers=KEY_1, json={"title": "t", "resourceIds": [huge]}
    )
    assert response.status_code == 400


def test_date_bounds_at_calendar_edges(client):
    _create(client, 1, KEY_1, "Now", "dated")
    page = _list(client, 1, KEY_1, **{"from": "0001-01-01T00:00:00+01:00"})
    assert page["total"] == 1
    page = _list(client, 1, KEY_1, **{"to": "9999-12-31T23:00:00-05:00"})
    assert page["total"] == 1


def test_batch_delete_only_removes_own_notes(client):
    first = _create(client, 1, KEY_1, "First", "batch one", ["bulk"])
    second = _create(client, 1, KEY_1, "Second", "batch two", ["bulk"])
    kept = _create(client, 1, KEY_1, "Kept", "batch three", ["bulk"])
    theirs = _create(client, 2, KEY_2, "Theirs", "batch four")

    response = client.request(
        "DELETE",
        "/api/v1/owners/1/notes/batch",
        headers=KEY_1,
        json={"ids": [first["id"], second["id"], theirs["id"], 999]},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "deleted": 2}

    ids = [item["id"] for item in _list(client, 1, KEY_1, q="batch")["items"]]
    assert ids == [kept["id"]]
    assert _list(client, 2, KEY_2)["total"] == 1
    tags = client.get("/api/v1/owners/1/tags", headers=KEY_1).json()
    assert [(tag["name"], tag["noteCount"]) for tag in tags] == [("bulk", 1)]

    index = TextIndex()
    with client.app.state.db.connection() as conn:
        assert index.entry(conn, first["id"]) is None
        assert index.entry(conn, second["id"]) is None
        assert index.check(conn).consistent


def test_batch_delete_requires_ids(client):
    response = client.request(
        "DELETE", "/api/v1/owners/1/notes/batch", headers=KEY_1, json={"ids": []}
    )
    assert response.status_code == 400
