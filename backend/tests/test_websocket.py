"""End-to-end tests for the chat socket.

Protocol:
1. The handshake carries an access token (cookie, Bearer header or ?token=).
2. On success the server sends {"event": "connected"} and the connection is
   in its user's identity-room. On failure it sends one socketError and
   closes with 1008 without touching the registry.
3. Clients send joinChat / typing / stopTyping with a chat id as data.
4. Chat mutations over HTTP are pushed to the participants' identity-rooms.
5. A user who stops being a participant is dropped from that chat-room on
   every device.
"""
import threading

import pytest
from starlette.websockets import WebSocketDisconnect

from app.chat.store import ChatStore
from app.users.store import UserStore

from conftest import auth_headers, create_user, receive_event, sync_point, token_for


def _connect(client, token):
    return client.websocket_connect(f"/ws?token={token}")


def _stats(client):
    return client.get("/realtime/stats").json()


@pytest.fixture
def alice(api_client):
    user = create_user(api_client, "alice")
    return user, token_for(api_client, user["id"])


@pytest.fixture
def bob(api_client):
    user = create_user(api_client, "bob")
    return user, token_for(api_client, user["id"])


@pytest.fixture
def carol(api_client):
    user = create_user(api_client, "carol")
    return user, token_for(api_client, user["id"])


def _one_on_one(client, token, receiver_id):
    response = client.post(f"/api/v1/chat-app/chats/c/{receiver_id}", headers=auth_headers(token))
    assert response.status_code in (200, 201), response.text
    return response.json()["data"]


def _group(client, admin_token, member_ids, name="Project"):
    response = client.post(
        "/api/v1/chat-app/chats/group",
        json={"name": name, "participants": list(member_ids)},
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _join(ws, chat_id):
    ws.send_json({"event": "joinChat", "data": chat_id})
    sync_point(ws)


class TestHandshake:
    def test_missing_token_is_rejected(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            error = receive_event(ws, "socketError")
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert error == "Un-authorized handshake. Token is missing or invalid"
        assert exc_info.value.code == 1008
        assert _stats(api_client) == {"connections": 0, "identities": 0, "rooms": 0}

    def test_invalid_token_gets_the_same_message(self, api_client):
        with _connect(api_client, "garbage") as ws:
            error = receive_event(ws, "socketError")
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

        assert error == "Un-authorized handshake. Token is missing or invalid"
        assert _stats(api_client)["connections"] == 0

    def test_valid_token_gets_connected(self, api_client, alice):
        _, token = alice

        with _connect(api_client, token) as ws:
            assert receive_event(ws, "connected") is None
            stats = _stats(api_client)

        assert stats == {"connections": 1, "identities": 1, "rooms": 1}

    def test_bearer_header_handshake(self, api_client, alice):
        _, token = alice

        with api_client.websocket_connect("/ws", headers=auth_headers(token)) as ws:
            receive_event(ws, "connected")

    def test_disconnect_releases_everything(self, api_client, alice, bob):
        _, alice_token = alice
        bob_user, _ = bob
        chat = _one_on_one(api_client, alice_token, bob_user["id"])

        with _connect(api_client, alice_token) as ws:
            receive_event(ws, "connected")
            ws.send_json({"event": "joinChat", "data": chat["id"]})
            sync_point(ws)
            assert _stats(api_client)["rooms"] == 2

        assert _stats(api_client) == {"connections": 0, "identities": 0, "rooms": 0}


class TestInboundEvents:
    def test_non_json_frame_reports_error(self, api_client, alice):
        _, token = alice

        with _connect(api_client, token) as ws:
            receive_event(ws, "connected")
            ws.send_text("not json")
            assert receive_event(ws, "socketError") == "Invalid frame: expected JSON"

    def test_join_requires_chat_id(self, api_client, alice):
        _, token = alice

        with _connect(api_client, token) as ws:
            receive_event(ws, "connected")
            ws.send_json({"event": "joinChat", "data": ""})
            assert receive_event(ws, "socketError") == "chatId must be a non-empty string"

    def test_join_foreign_chat_is_refused(self, api_client, alice, bob):
        _, alice_token = alice
        bob_user, _ = bob
        carol = create_user(api_client, "carol")
        carol_token = token_for(api_client, carol["id"])
        chat = _one_on_one(api_client, alice_token, bob_user["id"])

        with _connect(api_client, carol_token) as ws:
            receive_event(ws, "connected")
            ws.send_json({"event": "joinChat", "data": chat["id"]})
            assert receive_event(ws, "socketError") == "You are not a part of this chat"
            assert _stats(api_client)["rooms"] == 1

    def test_typing_reaches_the_other_participant_only(self, api_client, alice, bob):
        alice_user, alice_token = alice
        bob_user, bob_token = bob
        chat = _one_on_one(api_client, alice_token, bob_user["id"])

        with _connect(api_client, alice_token) as ws_alice, _connect(api_client, bob_token) as ws_bob:
            receive_event(ws_alice, "connected")
            receive_event(ws_bob, "connected")
            for ws in (ws_alice, ws_bob):
                ws.send_json({"event": "joinChat", "data": chat["id"]})
                sync_point(ws)

            ws_alice.send_json({"event": "typing", "data": chat["id"]})
            assert receive_event(ws_bob, "typing") == chat["id"]

            ws_alice.send_json({"event": "stopTyping", "data": chat["id"]})
            assert receive_event(ws_bob, "stopTyping") == chat["id"]

            # The sender gets nothing back: the next frame is the sync reply.
            sync_point(ws_alice)

    def test_typing_without_join_is_ignored(self, api_client, alice, bob):
        _, alice_token = alice
        bob_user, bob_token = bob
        chat = _one_on_one(api_client, alice_token, bob_user["id"])

        with _connect(api_client, alice_token) as ws_alice, _connect(api_client, bob_token) as ws_bob:
            receive_event(ws_alice, "connected")
            receive_event(ws_bob, "connected")
            ws_bob.send_json({"event": "joinChat", "data": chat["id"]})
            sync_point(ws_bob)

            ws_alice.send_json({"event": "typing", "data": chat["id"]})
            sync_point(ws_alice)

            # Nothing was relayed to bob ahead of his own sync reply.
            sync_point(ws_bob)

    def test_typing_reaches_senders_other_device(self, api_client, alice, bob):
        _, alice_token = alice
        bob_user, _ = bob
        chat = _one_on_one(api_client, alice_token, bob_user["id"])

        with _connect(api_client, alice_token) as phone, _connect(api_client, alice_token) as laptop:
            receive_event(phone, "connected")
            receive_event(laptop, "connected")
            for ws in (phone, laptop):
                ws.send_json({"event": "joinChat", "data": chat["id"]})
                sync_point(ws)

            phone.send_json({"event": "typing", "data": chat["id"]})
            assert receive_event(laptop, "typing") == chat["id"]
            sync_point(phone)


class TestHttpDrivenEvents:
    def test_new_chat_pushed_to_receiver(self, api_client, alice, bob):
        _, alice_token = alice
        bob_user, bob_token = bob

        with _connect(api_client, bob_token) as ws_bob:
            receive_event(ws_bob, "connected")
            chat = _one_on_one(api_client, alice_token, bob_user["id"])

            pushed = receive_event(ws_bob, "newChat")

        assert pushed["id"] == chat["id"]
        assert {p["username"] for p in pushed["participants"]} == {"alice", "bob"}

    def test_message_reaches_every_device_of_the_receiver(self, api_client, alice, bob):
        alice_user, alice_token = alice
        bob_user, bob_token = bob
        chat = _one_on_one(api_client, alice_token, bob_user["id"])

        with _connect(api_client, bob_token) as phone, \
             _connect(api_client, bob_token) as laptop, \
             _connect(api_client, alice_token) as ws_alice:
            for ws in (phone, laptop, ws_alice):
                receive_event(ws, "connected")

            response = api_client.post(
                f"/api/v1/chat-app/messages/{chat['id']}",
                json={"content": "hello bob"},
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 201

            for ws in (phone, laptop):
                message = receive_event(ws, "messageReceived")
                assert message["content"] == "hello bob"
                assert message["sender"]["id"] == alice_user["id"]

            # The sender's own socket gets no copy.
            sync_point(ws_alice)

    def test_message_delete_is_pushed(self, api_client, alice, bob):
        _, alice_token = alice
        bob_user, bob_token = bob
        chat = _one_on_one(api_client, alice_token, bob_user["id"])
        sent = api_client.post(
            f"/api/v1/chat-app/messages/{chat['id']}",
            json={"content": "oops"},
            headers=auth_headers(alice_token),
        ).json()["data"]

        with _connect(api_client, bob_token) as ws_bob:
            receive_event(ws_bob, "connected")
            response = api_client.delete(
                f"/api/v1/chat-app/messages/{chat['id']}/{sent['id']}",
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200

            assert receive_event(ws_bob, "messageDeleted")["id"] == sent["id"]

    def test_group_creation_pushes_to_members_but_not_creator(self, api_client, alice, bob, carol):
        alice_user, alice_token = alice
        bob_user, bob_token = bob
        carol_user, carol_token = carol

        with _connect(api_client, alice_token) as ws_alice, \
             _connect(api_client, bob_token) as ws_bob, \
             _connect(api_client, carol_token) as ws_carol:
            for ws in (ws_alice, ws_bob, ws_carol):
                receive_event(ws, "connected")

            chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

            for ws in (ws_bob, ws_carol):
                pushed = receive_event(ws, "newChat")
                assert pushed["id"] == chat["id"]
                assert pushed["isGroupChat"] is True
            sync_point(ws_alice)

    def test_rename_reaches_every_participant_including_admin(self, api_client, alice, bob, carol):
        _, alice_token = alice
        bob_user, bob_token = bob
        carol_user, carol_token = carol
        chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

        with _connect(api_client, alice_token) as ws_alice, \
             _connect(api_client, bob_token) as ws_bob, \
             _connect(api_client, carol_token) as ws_carol:
            for ws in (ws_alice, ws_bob, ws_carol):
                receive_event(ws, "connected")

            response = api_client.patch(
                f"/api/v1/chat-app/chats/group/{chat['id']}",
                json={"name": "Renamed"},
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200, response.text

            for ws in (ws_alice, ws_bob, ws_carol):
                pushed = receive_event(ws, "updateGroupName")
                assert pushed["id"] == chat["id"]
                assert pushed["name"] == "Renamed"

    def test_added_participant_gets_new_chat(self, api_client, alice, bob, carol):
        _, alice_token = alice
        bob_user, bob_token = bob
        carol_user, _ = carol
        dave = create_user(api_client, "dave")
        dave_token = token_for(api_client, dave["id"])
        chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

        with _connect(api_client, dave_token) as ws_dave, _connect(api_client, bob_token) as ws_bob:
            receive_event(ws_dave, "connected")
            receive_event(ws_bob, "connected")

            response = api_client.post(
                f"/api/v1/chat-app/chats/group/{chat['id']}/{dave['id']}",
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200, response.text

            pushed = receive_event(ws_dave, "newChat")
            assert pushed["id"] == chat["id"]
            assert dave["id"] in {p["id"] for p in pushed["participants"]}
            # Existing members are not notified.
            sync_point(ws_bob)

    def test_removed_participant_gets_leave_chat(self, api_client, alice, bob, carol):
        _, alice_token = alice
        bob_user, bob_token = bob
        carol_user, carol_token = carol
        chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

        with _connect(api_client, bob_token) as ws_bob, _connect(api_client, carol_token) as ws_carol:
            receive_event(ws_bob, "connected")
            receive_event(ws_carol, "connected")

            response = api_client.delete(
                f"/api/v1/chat-app/chats/group/{chat['id']}/{bob_user['id']}",
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200, response.text

            assert receive_event(ws_bob, "leaveChat")["id"] == chat["id"]
            sync_point(ws_carol)

    def test_group_delete_pushes_leave_chat_to_members_but_not_admin(self, api_client, alice, bob, carol):
        _, alice_token = alice
        bob_user, bob_token = bob
        carol_user, carol_token = carol
        chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

        with _connect(api_client, alice_token) as ws_alice, \
             _connect(api_client, bob_token) as ws_bob, \
             _connect(api_client, carol_token) as ws_carol:
            for ws in (ws_alice, ws_bob, ws_carol):
                receive_event(ws, "connected")

            response = api_client.delete(
                f"/api/v1/chat-app/chats/group/{chat['id']}",
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200, response.text

            for ws in (ws_bob, ws_carol):
                assert receive_event(ws, "leaveChat")["id"] == chat["id"]
            sync_point(ws_alice)

    def test_one_on_one_delete_pushes_leave_chat_to_other_party(self, api_client, alice, bob):
        _, alice_token = alice
        bob_user, bob_token = bob
        chat = _one_on_one(api_client, alice_token, bob_user["id"])

        with _connect(api_client, alice_token) as ws_alice, _connect(api_client, bob_token) as ws_bob:
            receive_event(ws_alice, "connected")
            receive_event(ws_bob, "connected")

            response = api_client.delete(
                f"/api/v1/chat-app/chats/remove/{chat['id']}",
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200, response.text

            assert receive_event(ws_bob, "leaveChat")["id"] == chat["id"]
            sync_point(ws_alice)


class TestMembershipChanges:
    """Chat-room membership follows participation on every device."""

    def test_removed_participant_stops_getting_typing(self, api_client, alice, bob, carol):
        _, alice_token = alice
        bob_user, bob_token = bob
        carol_user, carol_token = carol
        chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

        with _connect(api_client, bob_token) as ws_bob, _connect(api_client, carol_token) as ws_carol:
            receive_event(ws_bob, "connected")
            receive_event(ws_carol, "connected")
            _join(ws_bob, chat["id"])
            _join(ws_carol, chat["id"])

            response = api_client.delete(
                f"/api/v1/chat-app/chats/group/{chat['id']}/{bob_user['id']}",
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200, response.text
            receive_event(ws_bob, "leaveChat")

            ws_carol.send_json({"event": "typing", "data": chat["id"]})
            sync_point(ws_carol)
            # No typing frame ahead of bob's own sync reply.
            sync_point(ws_bob)

            ws_bob.send_json({"event": "typing", "data": chat["id"]})
            sync_point(ws_bob)
            sync_point(ws_carol)

            # Rejoining is refused now that bob is no participant.
            ws_bob.send_json({"event": "joinChat", "data": chat["id"]})
            assert receive_event(ws_bob, "socketError") == "You are not a part of this chat"

    def test_leaving_drops_every_device_from_the_room(self, api_client, alice, bob, carol):
        _, alice_token = alice
        bob_user, bob_token = bob
        carol_user, carol_token = carol
        chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

        with _connect(api_client, bob_token) as phone, \
             _connect(api_client, bob_token) as laptop, \
             _connect(api_client, carol_token) as ws_carol:
            for ws in (phone, laptop, ws_carol):
                receive_event(ws, "connected")
                _join(ws, chat["id"])

            response = api_client.delete(
                f"/api/v1/chat-app/chats/leave/group/{chat['id']}",
                headers=auth_headers(bob_token),
            )
            assert response.status_code == 200, response.text

            ws_carol.send_json({"event": "typing", "data": chat["id"]})
            sync_point(ws_carol)
            sync_point(phone)
            sync_point(laptop)

    def test_group_delete_empties_the_room(self, api_client, alice, bob, carol):
        _, alice_token = alice
        bob_user, bob_token = bob
        carol_user, carol_token = carol
        chat = _group(api_client, alice_token, [bob_user["id"], carol_user["id"]])

        with _connect(api_client, bob_token) as ws_bob, _connect(api_client, carol_token) as ws_carol:
            for ws in (ws_bob, ws_carol):
                receive_event(ws, "connected")
                _join(ws, chat["id"])
            assert _stats(api_client)["rooms"] == 3

            response = api_client.delete(
                f"/api/v1/chat-app/chats/group/{chat['id']}",
                headers=auth_headers(alice_token),
            )
            assert response.status_code == 200, response.text
            for ws in (ws_bob, ws_carol):
                receive_event(ws, "leaveChat")

            # Only the two identity-rooms are left.
            assert _stats(api_client)["rooms"] == 2

            ws_bob.send_json({"event": "typing", "data": chat["id"]})
            sync_point(ws_bob)
            sync_point(ws_carol)


class TestStoreThread:
    def test_store_access_stays_on_one_thread(self, api_client, alice, bob, monkeypatch):
        """HTTP dependencies, routes and the socket all reach the stores on the loop thread."""
        _, alice_token = alice
        bob_user, bob_token = bob
        seen = []
        original_get = UserStore.get
        original_get_chat = ChatStore.get_chat

        def get(self, user_id):
            seen.append(threading.get_ident())
            return original_get(self, user_id)

        def get_chat(self, chat_id):
            seen.append(threading.get_ident())
            return original_get_chat(self, chat_id)

        monkeypatch.setattr(UserStore, "get", get)
        monkeypatch.setattr(ChatStore, "get_chat", get_chat)

        assert api_client.get("/api/v1/users/current-user", headers=auth_headers(alice_token)).status_code == 200
        chat = _one_on_one(api_client, alice_token, bob_user["id"])
        response = api_client.post(
            f"/api/v1/chat-app/messages/{chat['id']}",
            json={"content": "hi"},
            headers=auth_headers(alice_token),
        )
        assert response.status_code == 201
        with _connect(api_client, bob_token) as ws_bob:
            receive_event(ws_bob, "connected")

        assert seen
        assert len(set(seen)) == 1
        assert threading.get_ident() not in seen
