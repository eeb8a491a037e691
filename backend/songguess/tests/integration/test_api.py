"""Integration tests for the HTTP API and the event WebSocket.

The app runs in-process through starlette's TestClient with an in-memory
store and a track source that needs no network access.
"""

import random

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from shared.storage import InMemoryStore, StoreUnavailableError
from songguess.server.app import create_app
from songguess.server.settings import GameServerSettings
from songguess.tracks.source import PassthroughPreviewResolver, StaticTrackSource


def _track_bodies(prefix: str, count: int = 4) -> list[dict]:
    return [
        {
            "id": f"{prefix}{i}",
            "name": f"Song {prefix}{i}",
            "artists": ["Someone"],
            "previewUrl": f"https://cdn.example/{prefix}{i}.mp3",
        }
        for i in range(count)
    ]


def _make_client(store=None) -> TestClient:
    app = create_app(
        settings=GameServerSettings(),
        store=store or InMemoryStore(),
        track_source=StaticTrackSource(),
        preview_resolver=PassthroughPreviewResolver(),
        rng=random.Random(11),
    )
    return TestClient(app)


@pytest.fixture
def client():
    with _make_client() as client:
        yield client


def _create(client: TestClient, **overrides) -> dict:
    body = {"name": "Host", "externalId": "ext-host", "tracks": _track_bodies("h"), "totalRounds": 10}
    body.update(overrides)
    response = client.post("/games", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _join(client: TestClient, code: str, name: str = "Guest", prefix: str = "g") -> dict:
    response = client.post(
        f"/games/{code}/join",
        json={"name": name, "externalId": f"ext-{name.lower()}", "tracks": _track_bodies(prefix)},
    )
    assert response.status_code == 200, response.text
    return response.json()


def _started(client: TestClient) -> tuple[str, str, str]:
    created = _create(client)
    code, host_id = created["code"], created["playerId"]
    guest_id = _join(client, code)["playerId"]
    response = client.post(f"/games/{code}/start", json={"playerId": host_id})
    assert response.status_code == 200, response.text
    return code, host_id, guest_id


class _BrokenStore:
    async def get(self, key: str) -> str | None:
        raise StoreUnavailableError("connection refused")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise StoreUnavailableError("connection refused")

    async def delete(self, key: str) -> None:
        raise StoreUnavailableError("connection refused")

    async def exists(self, key: str) -> bool:
        raise StoreUnavailableError("connection refused")


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestCreateAndJoin:
    def test_create_returns_code_and_host(self, client):
        created = _create(client)

        assert len(created["code"]) == 4
        assert created["game"]["status"] == "lobby"
        assert created["game"]["hostId"] == created["playerId"]
        assert "rankedTracks" not in created["game"]["players"][0]

    def test_time_range_label_in_view(self, client):
        created = _create(client, timeRange="short_term")

        assert created["game"]["timeRange"] == "short_term"
        assert created["game"]["timeRangeLabel"] == "Last 4 Weeks"

    def test_snake_case_body_is_accepted(self, client):
        response = client.post("/games", json={"name": "Host", "external_id": "ext-host", "total_rounds": 25})

        assert response.status_code == 201

    def test_unsupported_round_count(self, client):
        response = client.post("/games", json={"name": "Host", "externalId": "ext-host", "totalRounds": 7})

        assert response.status_code == 422
        assert response.json()["code"] == "invalid_round_count"

    def test_unknown_field_rejected(self, client):
        response = client.post("/games", json={"name": "Host", "externalId": "ext-host", "admin": True})

        assert response.status_code == 422

    def test_invalid_json_rejected(self, client):
        response = client.post("/games", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 422
        assert response.json() == {"error": "Invalid JSON body"}

    def test_join_with_lowercase_code(self, client):
        code = _create(client)["code"]

        joined = _join(client, code.lower())

        assert joined["code"] == code
        assert len(joined["game"]["players"]) == 2

    def test_get_unknown_game(self, client):
        response = client.get("/games/ZZZZ")

        assert response.status_code == 404
        assert response.json()["code"] == "game_not_found"


class TestStart:
    def test_non_host_forbidden(self, client):
        code = _create(client)["code"]
        guest_id = _join(client, code)["playerId"]

        response = client.post(f"/games/{code}/start", json={"playerId": guest_id})

        assert response.status_code == 403
        assert response.json()["code"] == "not_host"

    def test_single_player_cannot_start(self, client):
        created = _create(client)

        response = client.post(f"/games/{created['code']}/start", json={"playerId": created["playerId"]})

        assert response.status_code == 409
        assert response.json()["code"] == "not_enough_players"

    def test_no_playable_songs(self, client):
        created = _create(client, tracks=[])
        client.post(f"/games/{created['code']}/join", json={"name": "Guest", "externalId": "ext-guest"})

        response = client.post(f"/games/{created['code']}/start", json={"playerId": created["playerId"]})

        assert response.status_code == 422
        assert response.json()["code"] == "no_playable_songs"

    def test_start_opens_first_round(self, client):
        code, _, _ = _started(client)

        game = client.get(f"/games/{code}").json()

        assert game["status"] == "playing"
        assert game["round"]["number"] == 1
        assert game["round"]["status"] == "playing"
        assert game["round"]["song"]["ownerId"] is None


class TestRoundFlow:
    def test_guesses_end_round_and_next_round_starts(self, client):
        code, host_id, guest_id = _started(client)

        first = client.post(f"/games/{code}/guess", json={"playerId": host_id, "guessedPlayerId": guest_id})
        second = client.post(f"/games/{code}/guess", json={"playerId": guest_id, "guessedPlayerId": host_id})

        assert first.json() == {"success": True, "allGuessed": False}
        assert second.json() == {"success": True, "allGuessed": True}
        game = client.get(f"/games/{code}").json()
        assert game["round"]["status"] == "complete"
        assert game["round"]["song"]["ownerId"] in (host_id, guest_id)
        assert sum(game["scores"].values()) == 100

        advanced = client.post(f"/games/{code}/next-round", json={"currentRoundNumber": 1}).json()
        assert advanced["gameOver"] is False
        assert advanced["alreadyAdvanced"] is False
        assert advanced["round"]["number"] == 2

    def test_duplicate_guess_is_skipped(self, client):
        code, host_id, guest_id = _started(client)
        client.post(f"/games/{code}/guess", json={"playerId": host_id, "guessedPlayerId": guest_id})

        response = client.post(f"/games/{code}/guess", json={"playerId": host_id, "guessedPlayerId": host_id})

        assert response.status_code == 200
        assert response.json() == {"success": True, "skipped": True, "reason": "already_guessed"}

    def test_guess_for_unknown_player(self, client):
        code, host_id, _ = _started(client)

        response = client.post(f"/games/{code}/guess", json={"playerId": host_id, "guessedPlayerId": "nobody"})

        assert response.status_code == 404
        assert response.json()["code"] == "player_not_found"

    def test_timer_expiry_is_idempotent(self, client):
        code, _, _ = _started(client)

        first = client.post(f"/games/{code}/timer-expired", json={"roundNumber": 1})
        second = client.post(f"/games/{code}/timer-expired", json={"roundNumber": 1})

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert second.json() == {"success": True, "skipped": True, "reason": "round_already_ended"}

    def test_heart_response(self, client):
        code, host_id, guest_id = _started(client)
        owner = client.get(f"/games/{code}").json()
        assert owner["round"]["song"]["ownerId"] is None

        host_heart = client.post(f"/games/{code}/heart", json={"playerId": host_id}).json()
        guest_heart = client.post(f"/games/{code}/heart", json={"playerId": guest_id}).json()

        # Exactly one of the two is the owner, whose heart is acknowledged but not counted.
        assert sorted([host_heart["counted"], guest_heart["counted"]]) == [False, True]

    def test_repeated_next_round_does_not_skip(self, client):
        code, _, _ = _started(client)
        client.post(f"/games/{code}/timer-expired", json={"roundNumber": 1})
        client.post(f"/games/{code}/next-round", json={"currentRoundNumber": 1})

        repeated = client.post(f"/games/{code}/next-round", json={"currentRoundNumber": 1}).json()

        assert repeated["alreadyAdvanced"] is True
        assert repeated["round"]["number"] == 2
        assert client.get(f"/games/{code}").json()["currentRound"] == 1

    def test_next_round_while_round_is_open_conflicts(self, client):
        code, _, _ = _started(client)

        response = client.post(f"/games/{code}/next-round", json={"currentRoundNumber": 1})

        assert response.status_code == 409
        assert response.json()["code"] == "round_not_in_status"
        game = client.get(f"/games/{code}").json()
        assert game["currentRound"] == 0
        assert game["round"]["status"] == "playing"

    def test_plays_through_to_game_over(self, client):
        code, _, _ = _started(client)
        total = client.get(f"/games/{code}").json()["totalRounds"]

        result = {}
        for number in range(1, total + 1):
            client.post(f"/games/{code}/timer-expired", json={"roundNumber": number})
            result = client.post(f"/games/{code}/next-round", json={"currentRoundNumber": number}).json()

        assert result["gameOver"] is True
        assert set(result["finalScores"]) == set(result["heartTotals"])
        assert client.get(f"/games/{code}").json()["status"] == "finished"

    def test_guess_in_lobby_conflicts(self, client):
        created = _create(client)

        response = client.post(
            f"/games/{created['code']}/guess",
            json={"playerId": created["playerId"], "guessedPlayerId": created["playerId"]},
        )

        assert response.status_code == 409


class TestStoreFailure:
    def test_store_outage_is_503(self):
        with _make_client(store=_BrokenStore()) as client:
            response = client.get("/games/ABCD")

        assert response.status_code == 503
        assert response.json() == {"error": "Game store unavailable"}


class TestEventSocket:
    def test_subscriber_receives_game_events(self, client):
        code = _create(client)["code"]

        with client.websocket_connect(f"/ws/games/{code}") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

            _join(client, code)
            message = ws.receive_json()

        assert message["channel"] == f"presence-game-{code}"
        assert message["event"] == "player-joined"
        assert message["data"]["player"]["name"] == "Guest"

    @pytest.mark.parametrize("code", ["TOOLONG", "AB0D", "OKAY", "ab1d"])
    def test_invalid_code_is_rejected(self, client, code):
        with pytest.raises(WebSocketDisconnect), client.websocket_connect(f"/ws/games/{code}"):
            pass
