"""Tests for the chat REST endpoints (one-on-one and group chats)."""
import pytest

from conftest import auth_headers, create_user, token_for

CHATS = "/api/v1/chat-app/chats"


@pytest.fixture
def users(api_client):
    """alice, bob, carol and dave with their tokens, keyed by username."""
    result = {}
    for name in ("alice", "bob", "carol", "dave"):
        user = create_user(api_client, name)
        result[name] = {"user": user, "id": user["id"], "headers": auth_headers(token_for(api_client, user["id"]))}
    return result


def _group(client, users, name="Project", members=("bob", "carol"), admin="alice"):
    response = client.post(
        f"{CHATS}/group",
        json={"name": name, "participants": [users[m]["id"] for m in members]},
        headers=users[admin]["headers"],
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestAuthRequired:
    def test_list_without_token_is_401(self, api_client):
        response = api_client.get(f"{CHATS}/")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["data"] is None

    def test_garbage_token_is_401(self, api_client):
        response = api_client.get(f"{CHATS}/", headers=auth_headers("nope"))

        assert response.status_code == 401


class TestOneOnOne:
    def test_create_then_get_existing(self, api_client, users):
        alice, bob = users["alice"], users["bob"]

        created = api_client.post(f"{CHATS}/c/{bob['id']}", headers=alice["headers"])
        again = api_client.post(f"{CHATS}/c/{alice['id']}", headers=bob["headers"])

        assert created.status_code == 201
        assert again.status_code == 200
        assert created.json()["data"]["id"] == again.json()["data"]["id"]
        assert created.json()["data"]["isGroupChat"] is False

    def test_chat_with_self_is_400(self, api_client, users):
        alice = users["alice"]

        response = api_client.post(f"{CHATS}/c/{alice['id']}", headers=alice["headers"])

        assert response.status_code == 400

    def test_unknown_receiver_is_404(self, api_client, users):
        response = api_client.post(f"{CHATS}/c/missing", headers=users["alice"]["headers"])

        assert response.status_code == 404
        assert response.json()["message"] == "Receiver does not exist"

    def test_list_chats_for_participants_only(self, api_client, users):
        alice, bob, carol = users["alice"], users["bob"], users["carol"]
        api_client.post(f"{CHATS}/c/{bob['id']}", headers=alice["headers"])

        assert len(api_client.get(f"{CHATS}/", headers=alice["headers"]).json()["data"]) == 1
        assert len(api_client.get(f"{CHATS}/", headers=bob["headers"]).json()["data"]) == 1
        assert api_client.get(f"{CHATS}/", headers=carol["headers"]).json()["data"] == []

    def test_delete_one_on_one(self, api_client, users):
        alice, bob = users["alice"], users["bob"]
        chat = api_client.post(f"{CHATS}/c/{bob['id']}", headers=alice["headers"]).json()["data"]

        response = api_client.delete(f"{CHATS}/remove/{chat['id']}", headers=bob["headers"])

        assert response.status_code == 200
        assert api_client.get(f"{CHATS}/", headers=alice["headers"]).json()["data"] == []

    def test_search_available_users_excludes_caller(self, api_client, users):
        response = api_client.get(f"{CHATS}/users", headers=users["alice"]["headers"])

        names = [u["username"] for u in response.json()["data"]]
        assert names == ["bob", "carol", "dave"]


class TestGroupChat:
    def test_create_group(self, api_client, users):
        chat = _group(api_client, users)

        assert chat["isGroupChat"] is True
        assert chat["admin"] == users["alice"]["id"]
        assert {p["username"] for p in chat["participants"]} == {"alice", "bob", "carol"}

    def test_creator_in_participants_is_400(self, api_client, users):
        response = api_client.post(
            f"{CHATS}/group",
            json={"name": "X", "participants": [users["alice"]["id"], users["bob"]["id"]]},
            headers=users["alice"]["headers"],
        )

        assert response.status_code == 400

    def test_duplicate_participants_leave_too_few_members(self, api_client, users):
        bob_id = users["bob"]["id"]
        response = api_client.post(
            f"{CHATS}/group",
            json={"name": "X", "participants": [bob_id, bob_id]},
            headers=users["alice"]["headers"],
        )

        assert response.status_code == 400

    def test_blank_name_is_rejected(self, api_client, users):
        response = api_client.post(
            f"{CHATS}/group",
            json={"name": "   ", "participants": [users["bob"]["id"], users["carol"]["id"]]},
            headers=users["alice"]["headers"],
        )

        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_get_group_details(self, api_client, users):
        chat = _group(api_client, users)

        response = api_client.get(f"{CHATS}/group/{chat['id']}", headers=users["bob"]["headers"])

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Project"

    def test_get_one_on_one_as_group_is_404(self, api_client, users):
        chat = api_client.post(
            f"{CHATS}/c/{users['bob']['id']}", headers=users["alice"]["headers"]
        ).json()["data"]

        response = api_client.get(f"{CHATS}/group/{chat['id']}", headers=users["alice"]["headers"])

        assert response.status_code == 404

    def test_rename_admin_only(self, api_client, users):
        chat = _group(api_client, users)

        denied = api_client.patch(
            f"{CHATS}/group/{chat['id']}", json={"name": "Hijack"}, headers=users["bob"]["headers"]
        )
        renamed = api_client.patch(
            f"{CHATS}/group/{chat['id']}", json={"name": "Renamed"}, headers=users["alice"]["headers"]
        )

        assert denied.status_code == 403
        assert renamed.status_code == 200
        assert renamed.json()["data"]["name"] == "Renamed"

    def test_add_and_remove_participant(self, api_client, users):
        chat = _group(api_client, users)
        dave_id = users["dave"]["id"]
        admin = users["alice"]["headers"]

        added = api_client.post(f"{CHATS}/group/{chat['id']}/{dave_id}", headers=admin)
        again = api_client.post(f"{CHATS}/group/{chat['id']}/{dave_id}", headers=admin)
        removed = api_client.delete(f"{CHATS}/group/{chat['id']}/{dave_id}", headers=admin)
        missing = api_client.delete(f"{CHATS}/group/{chat['id']}/{dave_id}", headers=admin)

        assert added.status_code == 200
        assert dave_id in [p["id"] for p in added.json()["data"]["participants"]]
        assert again.status_code == 409
        assert removed.status_code == 200
        assert dave_id not in [p["id"] for p in removed.json()["data"]["participants"]]
        assert missing.status_code == 400

    def test_non_admin_cannot_add(self, api_client, users):
        chat = _group(api_client, users)

        response = api_client.post(
            f"{CHATS}/group/{chat['id']}/{users['dave']['id']}", headers=users["bob"]["headers"]
        )

        assert response.status_code == 403

    def test_leave_group(self, api_client, users):
        chat = _group(api_client, users)

        left = api_client.delete(f"{CHATS}/leave/group/{chat['id']}", headers=users["carol"]["headers"])
        again = api_client.delete(f"{CHATS}/leave/group/{chat['id']}", headers=users["carol"]["headers"])

        assert left.status_code == 200
        assert users["carol"]["id"] not in [p["id"] for p in left.json()["data"]["participants"]]
        assert again.status_code == 400

    def test_delete_group_admin_only(self, api_client, users):
        chat = _group(api_client, users)

        denied = api_client.delete(f"{CHATS}/group/{chat['id']}", headers=users["bob"]["headers"])
        deleted = api_client.delete(f"{CHATS}/group/{chat['id']}", headers=users["alice"]["headers"])
        gone = api_client.get(f"{CHATS}/group/{chat['id']}", headers=users["alice"]["headers"])

        assert denied.status_code == 403
        assert deleted.status_code == 200
        assert gone.status_code == 404
