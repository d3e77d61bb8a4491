import pytest
from starlette.testclient import TestClient

from pools.logic.retry import RetryPolicy
from pools.logic.rng import create_rng
from pools.logic.service import PoolService
from pools.logic.types import AxisNumbers
from pools.server.app import create_app
from pools.server.settings import PoolServerSettings
from pools.tests.conftest import COMMISSIONER, FIXED_NOW
from pools.tests.mocks.repository import InMemoryPoolRepository
from shared.db import Database

COMMISH_HEADERS = {"X-User-Id": COMMISSIONER}
ALICE_HEADERS = {"X-User-Id": "alice"}
IDENTITY_AXES = AxisNumbers(rows=tuple(range(10)), cols=tuple(range(10)))


def _settings(**overrides) -> PoolServerSettings:
    overrides.setdefault("database_path", ":memory:")
    return PoolServerSettings(**overrides)


@pytest.fixture
def repository():
    return InMemoryPoolRepository()


@pytest.fixture
def client(repository):
    service = PoolService(
        repository,
        retry_policy=RetryPolicy(max_attempts=2, base_delay_seconds=0),
        rng=create_rng(seed=7),
        clock=lambda: FIXED_NOW,
    )
    return TestClient(create_app(settings=_settings(), service=service))


def _create_pool(client: TestClient, **body) -> dict:
    body.setdefault("format", "squares")
    body.setdefault("total_pot", 100)
    response = client.post("/pools", json=body, headers=COMMISH_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


class TestPoolEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_create_and_fetch(self, client):
        pool = _create_pool(client, name="Office pool")

        response = client.get(f"/pools/{pool['pool_id']}")

        assert response.status_code == 200
        assert response.json()["name"] == "Office pool"
        assert response.json()["commissioner_id"] == COMMISSIONER
        assert response.json()["status"] == "open"

    def test_find_by_invite_code(self, client):
        pool = _create_pool(client)
        response = client.get(f"/pools/by-invite/{pool['invite_code'].lower()}")
        assert response.json()["pool_id"] == pool["pool_id"]

    def test_unknown_invite_code(self, client):
        response = client.get("/pools/by-invite/NOPE99")
        assert response.status_code == 404
        assert response.json()["code"] == "InviteCodeNotFoundError"

    def test_unknown_pool(self, client):
        response = client.get("/pools/missing")
        assert response.status_code == 404
        assert response.json() == {"error": "pool missing not found", "code": "PoolNotFoundError"}

    def test_create_requires_user_header(self, client):
        response = client.post("/pools", json={"format": "squares", "total_pot": 10})
        assert response.status_code == 401
        assert response.json()["code"] == "RequestError"

    def test_create_rejects_invalid_pot(self, client):
        response = client.post("/pools", json={"format": "squares", "total_pot": "lots"}, headers=COMMISH_HEADERS)
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidPotError"

    def test_create_rejects_unknown_fields(self, client):
        response = client.post(
            "/pools",
            json={"format": "squares", "total_pot": 10, "owner": "me"},
            headers=COMMISH_HEADERS,
        )
        assert response.status_code == 400

    def test_create_rejects_malformed_json(self, client):
        response = client.post("/pools", content=b"{not json", headers=COMMISH_HEADERS)
        assert response.status_code == 400

    def test_oversized_body_rejected(self, client):
        response = client.post(
            "/pools",
            json={"format": "squares", "total_pot": 10, "name": "x" * 20000},
            headers=COMMISH_HEADERS,
        )
        assert response.status_code == 413

    def test_lock_requires_commissioner(self, client):
        pool = _create_pool(client)
        response = client.post(f"/pools/{pool['pool_id']}/lock", headers=ALICE_HEADERS)
        assert response.status_code == 403
        assert response.json()["code"] == "PermissionDeniedError"

    def test_lock_twice_conflicts(self, client):
        pool = _create_pool(client)
        assert client.post(f"/pools/{pool['pool_id']}/lock", headers=COMMISH_HEADERS).status_code == 200

        response = client.post(f"/pools/{pool['pool_id']}/lock", headers=COMMISH_HEADERS)

        assert response.status_code == 409
        assert response.json()["code"] == "InvalidTransitionError"


class TestCellEndpoints:
    def test_claim_release_cycle(self, client):
        pool = _create_pool(client)
        base = f"/pools/{pool['pool_id']}/cells/r2c5"

        claimed = client.post(f"{base}/claim", headers=ALICE_HEADERS)
        conflict = client.post(f"{base}/claim", headers={"X-User-Id": "bob"})
        released = client.post(f"{base}/release", headers=ALICE_HEADERS)

        assert claimed.status_code == 200
        assert claimed.json()["owner_id"] == "alice"
        assert claimed.json()["cell_id"] == "r2c5"
        assert conflict.status_code == 409
        assert conflict.json()["code"] == "AlreadyClaimedError"
        assert released.json()["status"] == "available"

    def test_list_cells(self, client):
        pool = _create_pool(client, format="strip_cards", strip_count=3)
        response = client.get(f"/pools/{pool['pool_id']}/cells")
        assert [c["cell_id"] for c in response.json()] == ["s0", "s1", "s2"]

    def test_claim_after_lock_conflicts(self, client):
        pool = _create_pool(client)
        client.post(f"/pools/{pool['pool_id']}/lock", headers=COMMISH_HEADERS)

        response = client.post(f"/pools/{pool['pool_id']}/cells/r0c0/claim", headers=ALICE_HEADERS)

        assert response.status_code == 409
        assert response.json()["code"] == "PoolNotOpenError"

    def test_transient_store_failure_surfaces_as_503(self, client, repository):
        pool = _create_pool(client)
        repository.failures["get_cell"] = 5

        response = client.post(f"/pools/{pool['pool_id']}/cells/r0c0/claim", headers=ALICE_HEADERS)

        assert response.status_code == 503
        assert response.json()["code"] == "OperationFailedError"


class TestPayoutEndpoints:
    def test_default_payouts(self, client):
        pool = _create_pool(client, total_pot=100)

        data = client.get(f"/pools/{pool['pool_id']}/payouts").json()

        assert data["applicable"] is True
        assert data["formatted"] == {"q1": "$20.00", "q2": "$20.00", "q3": "$20.00", "final": "$40.00"}
        assert data["total"] == "$100.00"

    def test_update_pot(self, client):
        pool = _create_pool(client)

        response = client.put(
            f"/pools/{pool['pool_id']}/pot",
            json={"total_pot": "1000", "payout_structure": {"q1": 0.1, "q2": 0.1, "q3": 0.1, "final": 0.7}},
            headers=COMMISH_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["formatted"]["final"] == "$700.00"

    def test_update_pot_rejects_bad_structure(self, client):
        pool = _create_pool(client)
        response = client.put(
            f"/pools/{pool['pool_id']}/pot",
            json={"total_pot": 100, "payout_structure": {"q1": 0.5, "q2": 0.5, "q3": 0.5, "final": 0.5}},
            headers=COMMISH_HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidStructureError"

    def test_donations_only(self, client):
        pool = _create_pool(client, total_pot="Donations Only")

        data = client.get(f"/pools/{pool['pool_id']}/payouts").json()

        assert data["applicable"] is False
        assert data["total"] is None
        assert data["formatted"]["final"] is None


class TestScoringEndpoints:
    def test_period_score_and_winners(self, client, repository):
        pool = _create_pool(client)
        pool_id = pool["pool_id"]
        client.post(f"/pools/{pool_id}/cells/r1c4/claim", headers=ALICE_HEADERS)
        client.post(f"/pools/{pool_id}/lock", headers=COMMISH_HEADERS)
        repository.pools[pool_id] = repository.pools[pool_id].model_copy(update={"axis_numbers": IDENTITY_AXES})

        response = client.post(
            f"/pools/{pool_id}/scores",
            json={"period": "final", "home": 21, "away": 14},
            headers=COMMISH_HEADERS,
        )
        winners = client.get(f"/pools/{pool_id}/winners").json()

        assert response.status_code == 200
        assert winners["final"]["cell_id"] == "r1c4"
        assert winners["final"]["owner_id"] == "alice"

    def test_score_before_lock_conflicts(self, client):
        pool = _create_pool(client)
        response = client.post(
            f"/pools/{pool['pool_id']}/scores",
            json={"period": "q1", "home": 0, "away": 0},
            headers=COMMISH_HEADERS,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "PoolNotLockedError"

    def test_negative_score_rejected(self, client):
        pool = _create_pool(client)
        response = client.post(
            f"/pools/{pool['pool_id']}/scores",
            json={"period": "q1", "home": -1, "away": 0},
            headers=COMMISH_HEADERS,
        )
        assert response.status_code == 400

    def test_strip_standings(self, client):
        pool = _create_pool(client, format="strip_cards", strip_count=3)
        pool_id = pool["pool_id"]
        client.post(f"/pools/{pool_id}/cells/s0/claim", headers=ALICE_HEADERS)
        client.post(f"/pools/{pool_id}/cells/s2/claim", headers=ALICE_HEADERS)
        client.post(f"/pools/{pool_id}/cells/s1/claim", headers={"X-User-Id": "bob"})

        standings = client.get(f"/pools/{pool_id}/standings").json()

        assert standings == [{"user_id": "alice", "claimed_count": 2}, {"user_id": "bob", "claimed_count": 1}]


class TestPickemEndpoints:
    def _matchup(self, game_id: str, week: int = 1) -> dict:
        return {
            "game_id": game_id,
            "home_team": "Bears",
            "away_team": "Packers",
            "start_time": "2026-09-14T17:00:00Z",
            "week": week,
            "favorite": "home",
        }

    def test_full_pickem_flow(self, client):
        pool = _create_pool(client, format="pickem")
        base = f"/pools/{pool['pool_id']}"

        added = client.post(f"{base}/matchups", json=self._matchup("g1"), headers=COMMISH_HEADERS)
        client.post(f"{base}/matchups", json=self._matchup("g2", week=2), headers=COMMISH_HEADERS)
        client.post(f"{base}/matchups/g1/pick", json={"side": "away"}, headers=ALICE_HEADERS)
        client.post(f"{base}/matchups/g1/pick", json={"side": "home"}, headers={"X-User-Id": "bob"})
        final = client.post(f"{base}/matchups/g1/final", json={"home": 14, "away": 20}, headers=COMMISH_HEADERS)
        scores = client.post(
            f"{base}/pickem/scores",
            json={"include_upsets": True, "upset_bonus": 2},
            headers=COMMISH_HEADERS,
        )
        snapshot = client.get(f"{base}/pickem/scoreboard")

        assert added.status_code == 201
        assert final.json()["status"] == "completed"
        assert scores.status_code == 200
        assert scores.json()["entries"]["alice"]["points"] == 3
        assert [row["user_id"] for row in scores.json()["standings"]] == ["alice", "bob"]
        assert snapshot.json() == scores.json()

    def test_reseeding_completed_matchup_conflicts(self, client):
        pool = _create_pool(client, format="pickem")
        base = f"/pools/{pool['pool_id']}"
        client.post(f"{base}/matchups", json=self._matchup("g1"), headers=COMMISH_HEADERS)
        client.post(f"{base}/matchups/g1/pick", json={"side": "home"}, headers=ALICE_HEADERS)
        client.post(f"{base}/matchups/g1/final", json={"home": 10, "away": 20}, headers=COMMISH_HEADERS)

        response = client.post(f"{base}/matchups", json=self._matchup("g1"), headers=COMMISH_HEADERS)
        stored = client.get(f"{base}/matchups").json()

        assert response.status_code == 409
        assert response.json()["code"] == "PicksClosedError"
        assert stored[0]["status"] == "completed"
        assert stored[0]["picks"] == {"alice": "home"}

    def test_week_filter(self, client):
        pool = _create_pool(client, format="pickem")
        base = f"/pools/{pool['pool_id']}"
        client.post(f"{base}/matchups", json=self._matchup("g1", week=1), headers=COMMISH_HEADERS)
        client.post(f"{base}/matchups", json=self._matchup("g2", week=2), headers=COMMISH_HEADERS)

        week2 = client.get(f"{base}/matchups", params={"week": 2}).json()
        invalid = client.get(f"{base}/matchups", params={"week": "two"})

        assert [m["game_id"] for m in week2] == ["g2"]
        assert invalid.status_code == 400

    def test_weekly_scores_for_empty_week(self, client):
        pool = _create_pool(client, format="pickem")
        base = f"/pools/{pool['pool_id']}"
        client.post(f"{base}/matchups", json=self._matchup("g1"), headers=COMMISH_HEADERS)

        response = client.post(f"{base}/pickem/scores", json={"week": 4}, headers=COMMISH_HEADERS)

        assert response.status_code == 422
        assert response.json()["code"] == "NoMatchupsForWeekError"

    def test_scoreboard_missing(self, client):
        pool = _create_pool(client, format="pickem")
        response = client.get(f"/pools/{pool['pool_id']}/pickem/scoreboard", params={"key": "week3"})
        assert response.status_code == 404
        assert response.json()["code"] == "ScoreboardNotFound"

    def test_naive_start_time_rejected(self, client):
        pool = _create_pool(client, format="pickem")
        body = {**self._matchup("g1"), "start_time": "2026-09-14T17:00:00"}
        response = client.post(f"/pools/{pool['pool_id']}/matchups", json=body, headers=COMMISH_HEADERS)
        assert response.status_code == 400


class TestOwnedDatabase:
    def test_app_owned_database_persists_and_closes(self, tmp_path):
        db_path = tmp_path / "pools.db"
        app = create_app(settings=_settings(database_path=str(db_path)))

        with TestClient(app) as client:
            pool = _create_pool(client, name="persisted")

        db = Database(db_path)
        db.connect()
        try:
            row = db.connection.execute("SELECT invite_code FROM pools WHERE id = ?", (pool["pool_id"],)).fetchone()
        finally:
            db.close()
        assert row == (pool["invite_code"],)
