async def _create(client, headers, **fields):
    resp = await client.post("/api/notes", json={"title": "Note", **fields}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["note"]


class TestCrud:
    async def test_create_sets_editor_and_counts(self, client, alice):
        body, headers = alice
        note = await _create(client, headers, content="one two three", color="#ffaa00")
        assert note["version"] == 1
        assert note["lastEditedBy"]["username"] == "alice"
        assert note["lastEditedBy"]["id"] == body["user"]["id"]
        assert note["wordCount"] == 3
        assert note["characterCount"] == 13
        assert note["readingTime"] == 1
        assert note["color"] == "#ffaa00"
        assert note["isPinned"] is False

    async def test_bad_color(self, client, alice):
        _, headers = alice
        resp = await client.post("/api/notes", json={"title": "x", "color": "chartreuse"}, headers=headers)
        assert resp.status_code == 400

    async def test_version_bumps_only_on_title_or_content(self, client, alice):
        _, headers = alice
        note = await _create(client, headers, content="v1")
        url = f"/api/notes/{note['id']}"

        resp = await client.put(url, json={"category": "work"}, headers=headers)
        assert resp.json()["note"]["version"] == 1

        resp = await client.put(url, json={"content": "v2"}, headers=headers)
        assert resp.json()["note"]["version"] == 2

        resp = await client.put(url, json={"title": "New title", "content": "v3"}, headers=headers)
        assert resp.json()["note"]["version"] == 3

        resp = await client.put(url, json={"title": "New title"}, headers=headers)
        assert resp.json()["note"]["version"] == 3

    async def test_pin_twice_restores_state(self, client, alice):
        _, headers = alice
        note = await _create(client, headers)
        url = f"/api/notes/{note['id']}/pin"

        resp = await client.patch(url, headers=headers)
        assert resp.json()["message"] == "Note pinned successfully"
        assert resp.json()["note"]["isPinned"] is True

        resp = await client.patch(url, headers=headers)
        after = resp.json()["note"]
        assert after["isPinned"] is False
        assert after["version"] == note["version"]

    async def test_archive_toggle(self, client, alice):
        _, headers = alice
        note = await _create(client, headers)
        resp = await client.patch(f"/api/notes/{note['id']}/archive", headers=headers)
        assert resp.json()["note"]["isArchived"] is True

        resp = await client.get("/api/notes", headers=headers)
        assert resp.json()["notes"] == []

        resp = await client.get("/api/notes/archived", headers=headers)
        assert [n["id"] for n in resp.json()["notes"]] == [note["id"]]
        assert resp.json()["pagination"]["total"] == 1

    async def test_delete(self, client, alice):
        _, headers = alice
        note = await _create(client, headers)
        await client.post(f"/api/notes/{note['id']}/reminders", json={"date": "2999-01-01T09:00:00Z"}, headers=headers)
        resp = await client.delete(f"/api/notes/{note['id']}", headers=headers)
        assert resp.status_code == 200
        resp = await client.get(f"/api/notes/{note['id']}", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOTE_NOT_FOUND"

    async def test_other_users_note_is_not_found(self, client, alice, bob):
        _, a_headers = alice
        _, b_headers = bob
        note = await _create(client, a_headers)

        for method, url, body in (
            ("GET", f"/api/notes/{note['id']}", None),
            ("PUT", f"/api/notes/{note['id']}", {"title": "hijack"}),
            ("DELETE", f"/api/notes/{note['id']}", None),
            ("PATCH", f"/api/notes/{note['id']}/pin", None),
            ("POST", f"/api/notes/{note['id']}/tags", {"tag": "x"}),
        ):
            resp = await client.request(method, url, json=body, headers=b_headers)
            assert resp.status_code == 404, (method, url)
            assert resp.json()["code"] == "NOTE_NOT_FOUND"


class TestTags:
    async def test_add_is_idempotent_and_lowercased(self, client, alice):
        _, headers = alice
        note = await _create(client, headers)
        url = f"/api/notes/{note['id']}/tags"

        await client.post(url, json={"tag": "Exam"}, headers=headers)
        resp = await client.post(url, json={"tag": "exam"}, headers=headers)
        after = resp.json()["note"]
        assert after["tags"] == ["exam"]
        assert after["version"] == 1

    async def test_remove(self, client, alice):
        _, headers = alice
        note = await _create(client, headers, tags=["alpha", "beta"])
        resp = await client.delete(f"/api/notes/{note['id']}/tags/alpha", headers=headers)
        assert resp.json()["note"]["tags"] == ["beta"]

        resp = await client.delete(f"/api/notes/{note['id']}/tags/alpha", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "TAG_NOT_FOUND"

    async def test_tag_counts(self, client, alice):
        _, headers = alice
        await _create(client, headers, tags=["math", "exam"])
        await _create(client, headers, tags=["math"])
        archived = await _create(client, headers, tags=["math", "old"])
        await client.patch(f"/api/notes/{archived['id']}/archive", headers=headers)

        resp = await client.get("/api/notes/tags", headers=headers)
        assert resp.json()["tags"] == [{"name": "math", "count": 2}, {"name": "exam", "count": 1}]


class TestReminders:
    async def test_future_reminder(self, client, alice):
        _, headers = alice
        note = await _create(client, headers)
        resp = await client.post(
            f"/api/notes/{note['id']}/reminders",
            json={"date": "2999-05-01T10:00:00+02:00", "message": "review"},
            headers=headers,
        )
        assert resp.status_code == 200
        reminders = resp.json()["note"]["reminders"]
        assert reminders[0]["date"] == "2999-05-01T08:00:00Z"
        assert reminders[0]["message"] == "review"
        assert reminders[0]["isTriggered"] is False

    async def test_remove_reminder(self, client, alice, bob):
        _, headers = alice
        _, b_headers = bob
        note = await _create(client, headers)
        resp = await client.post(f"/api/notes/{note['id']}/reminders", json={"date": "2999-01-01T09:00:00Z"}, headers=headers)
        reminder_id = resp.json()["note"]["reminders"][0]["id"]
        url = f"/api/notes/{note['id']}/reminders/{reminder_id}"

        resp = await client.delete(url, headers=b_headers)
        assert resp.json()["code"] == "NOTE_NOT_FOUND"

        resp = await client.delete(url, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["note"]["reminders"] == []

        resp = await client.delete(url, headers=headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "REMINDER_NOT_FOUND"

    async def test_past_reminder(self, client, alice):
        _, headers = alice
        note = await _create(client, headers)
        resp = await client.post(f"/api/notes/{note['id']}/reminders", json={"date": "2001-01-01T00:00:00Z"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_DATE"


class TestListing:
    async def test_pinned_float_first(self, client, alice):
        _, headers = alice
        first = await _create(client, headers, title="first")
        await _create(client, headers, title="second")
        await client.patch(f"/api/notes/{first['id']}/pin", headers=headers)
        await _create(client, headers, title="third")

        resp = await client.get("/api/notes", params={"sortBy": "title", "sortOrder": "desc"}, headers=headers)
        assert [n["title"] for n in resp.json()["notes"]] == ["first", "third", "second"]

        resp = await client.get("/api/notes/pinned", headers=headers)
        assert resp.json()["count"] == 1

    async def test_filters(self, client, alice):
        _, headers = alice
        await _create(client, headers, title="idea", category="ideas")
        await _create(client, headers, title="meet", category="meeting", isPinned=True)

        resp = await client.get("/api/notes", params={"category": "ideas"}, headers=headers)
        assert [n["title"] for n in resp.json()["notes"]] == ["idea"]

        resp = await client.get("/api/notes", params={"pinned": "true"}, headers=headers)
        assert [n["title"] for n in resp.json()["notes"]] == ["meet"]

        resp = await client.get("/api/notes/category/meeting", headers=headers)
        body = resp.json()
        assert body["category"] == "meeting"
        assert body["count"] == 1

    async def test_search_ranks_title_hits_first(self, client, alice):
        _, headers = alice
        await _create(client, headers, title="misc", content="some python here")
        await _create(client, headers, title="Python basics", content="intro")
        await _create(client, headers, title="cooking", content="pasta")
        hidden = await _create(client, headers, title="python archive")
        await client.patch(f"/api/notes/{hidden['id']}/archive", headers=headers)

        resp = await client.get("/api/notes", params={"search": "python"}, headers=headers)
        body = resp.json()
        assert body["searchQuery"] == "python"
        assert [n["title"] for n in body["notes"]] == ["Python basics", "misc"]
        assert body["pagination"]["total"] == 2

    async def test_search_matches_non_ascii_tags(self, client, alice):
        _, headers = alice
        await _create(client, headers, title="cv", tags=["résumé"])
        await _create(client, headers, title="other", tags=["misc"])

        resp = await client.get("/api/notes", params={"search": "résumé"}, headers=headers)
        body = resp.json()
        assert [n["title"] for n in body["notes"]] == ["cv"]
        assert body["pagination"]["total"] == 1

        resp = await client.get("/api/notes", params={"search": '"'}, headers=headers)
        assert resp.json()["pagination"]["total"] == 0

    async def test_stats(self, client, alice):
        _, headers = alice
        await _create(client, headers, content="a b c", category="study")
        pinned = await _create(client, headers, content="d e", category="study")
        await client.patch(f"/api/notes/{pinned['id']}/pin", headers=headers)
        archived = await _create(client, headers, content="f", category="work")
        await client.patch(f"/api/notes/{archived['id']}/archive", headers=headers)

        resp = await client.get("/api/notes/stats", headers=headers)
        body = resp.json()
        assert body["overview"] == {
            "total": 3,
            "archived": 1,
            "pinned": 1,
            "totalWords": 6,
            "totalCharacters": 9,
        }
        assert body["byCategory"] == [{"category": "study", "count": 2}]


class TestCollaborators:
    async def test_share_and_unshare(self, client, alice, bob):
        _, a_headers = alice
        bob_body, b_headers = bob
        note = await _create(client, a_headers, title="shared")
        url = f"/api/notes/{note['id']}/collaborators"

        resp = await client.post(url, json={"username": "bob"}, headers=a_headers)
        assert resp.status_code == 200
        collaborators = resp.json()["note"]["collaborators"]
        assert len(collaborators) == 1
        assert collaborators[0]["user"]["id"] == bob_body["user"]["id"]
        assert collaborators[0]["permission"] == "read"

        resp = await client.post(url, json={"username": "bob", "permission": "write"}, headers=a_headers)
        collaborators = resp.json()["note"]["collaborators"]
        assert [c["permission"] for c in collaborators] == ["write"]

        resp = await client.get("/api/notes/shared", headers=b_headers)
        shared = resp.json()["notes"]
        assert [n["title"] for n in shared] == ["shared"]
        assert shared[0]["permission"] == "write"

        # collaborators read through the shared view
        resp = await client.get(f"/api/notes/{note['id']}", headers=b_headers)
        assert resp.status_code == 404

        resp = await client.delete(f"{url}/{collaborators[0]['id']}", headers=a_headers)
        assert resp.json()["note"]["collaborators"] == []
        resp = await client.get("/api/notes/shared", headers=b_headers)
        assert resp.json()["notes"] == []

        resp = await client.delete(f"{url}/{collaborators[0]['id']}", headers=a_headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "COLLABORATOR_NOT_FOUND"

    async def test_write_grant_allows_editing(self, client, alice, bob):
        _, a_headers = alice
        bob_body, b_headers = bob
        note = await _create(client, a_headers, title="draft", content="v1")
        note_url = f"/api/notes/{note['id']}"
        share_url = f"{note_url}/collaborators"

        await client.post(share_url, json={"username": "bob", "permission": "read"}, headers=a_headers)
        resp = await client.put(note_url, json={"content": "read only"}, headers=b_headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOTE_NOT_FOUND"

        await client.post(share_url, json={"username": "bob", "permission": "write"}, headers=a_headers)
        resp = await client.put(note_url, json={"content": "v2 by bob"}, headers=b_headers)
        assert resp.status_code == 200
        edited = resp.json()["note"]
        assert edited["content"] == "v2 by bob"
        assert edited["version"] == 2
        assert edited["lastEditedBy"]["id"] == bob_body["user"]["id"]

        resp = await client.put(note_url, json={"isPinned": True}, headers=b_headers)
        assert resp.status_code == 400
        assert resp.json()["details"][0]["field"] == "isPinned"

        # other actions stay with the owner
        resp = await client.delete(note_url, headers=b_headers)
        assert resp.status_code == 404
        resp = await client.get(note_url, headers=a_headers)
        assert resp.json()["note"]["content"] == "v2 by bob"

    async def test_unknown_or_self(self, client, alice):
        _, headers = alice
        note = await _create(client, headers)
        url = f"/api/notes/{note['id']}/collaborators"

        resp = await client.post(url, json={"username": "nobody"}, headers=headers)
        assert resp.status_code == 400
        resp = await client.post(url, json={"username": "alice"}, headers=headers)
        assert resp.status_code == 400
