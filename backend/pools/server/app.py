from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

from pools.logic.exceptions import (
    OperationCancelledError,
    OperationFailedError,
    PermissionDeniedError,
    PoolConflictError,
    PoolEngineError,
    PoolExhaustionError,
    PoolValidationError,
    RecordNotFoundError,
)
from pools.logic.payouts import format_currency
from pools.logic.scoring import OVERALL_SCOREBOARD_KEY, pickem_standings
from pools.logic.service import PoolService
from pools.server.settings import PoolServerSettings
from pools.server.types import (
    AddMatchupRequest,
    CreatePoolRequest,
    FinalScoreRequest,
    PeriodScoreRequest,
    PickRequest,
    RequestError,
    ScorePickemRequest,
    UpdatePotRequest,
)
from shared.db import Database, SqlitePoolRepository
from shared.logging import bind_request_context, setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request

    from pools.logic.types import PeriodPayouts, PickemScoreboard, Pool

M = TypeVar("M", bound=BaseModel)

USER_ID_HEADER = "x-user-id"

# Most specific family first; the handler walks this list in order.
_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (PermissionDeniedError, 403),
    (RecordNotFoundError, 404),
    (PoolConflictError, 409),
    (PoolExhaustionError, 422),
    (PoolValidationError, 400),
    (OperationFailedError, 503),
    (OperationCancelledError, 504),
    (TimeoutError, 504),
]


def _error_response(message: str, code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status_code)


async def handle_engine_error(_request: Request, exc: Exception) -> JSONResponse:
    status_code = next((code for family, code in _ERROR_STATUS if isinstance(exc, family)), 500)
    if status_code >= 500:  # noqa: PLR2004
        logger.warning("request failed", error=str(exc), error_type=type(exc).__name__)
    message = str(exc) or "operation timed out"
    return _error_response(message, type(exc).__name__, status_code)


async def handle_request_error(_request: Request, exc: RequestError) -> JSONResponse:
    return _error_response(exc.message, "RequestError", exc.status_code)


def _caller_id(request: Request) -> str:
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not user_id:
        raise RequestError("Missing X-User-Id header", status_code=401)
    bind_request_context(user_id=user_id, pool_id=request.path_params.get("pool_id"))
    return user_id


async def _parse_body(request: Request, model: type[M]) -> M:
    settings: PoolServerSettings = request.app.state.settings
    raw_body = await request.body()
    if len(raw_body) > settings.max_request_body_bytes:
        raise RequestError("Request body too large", status_code=413)
    try:
        body = json.loads(raw_body) if raw_body else {}
        return model.model_validate(body)
    except (ValueError, TypeError, UnicodeDecodeError, ValidationError) as exc:  # fmt: skip
        raise RequestError(f"Invalid request body: {exc}") from exc


def _service(request: Request) -> PoolService:
    return request.app.state.service


async def _is_commissioner(request: Request, user_id: str) -> bool:
    pool = await _service(request).get_pool(request.path_params["pool_id"])
    return pool.commissioner_id == user_id


def _pool_json(pool: Pool) -> dict:
    return pool.model_dump(mode="json")


def _payouts_json(payouts: PeriodPayouts) -> dict:
    amounts = payouts.model_dump(mode="json")
    formatted = {k: format_currency(v) if v is not None else None for k, v in payouts.model_dump().items()}
    total = payouts.total
    return {
        "applicable": payouts.applicable,
        "amounts": amounts,
        "formatted": formatted,
        "total": format_currency(total) if total is not None else None,
    }


def _scoreboard_json(scoreboard: PickemScoreboard) -> dict:
    data = scoreboard.model_dump(mode="json")
    data["standings"] = [
        {"user_id": user_id, **entry.model_dump()} for user_id, entry in pickem_standings(scoreboard)
    ]
    return data


# ============ Routes ============


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def create_pool(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    body = await _parse_body(request, CreatePoolRequest)
    pool = await _service(request).create_pool(
        commissioner_id=user_id,
        format=body.format,
        total_pot=body.total_pot,
        name=body.name,
        payout_structure=body.payout_structure,
        strip_count=body.strip_count,
    )
    return JSONResponse(_pool_json(pool), status_code=201)


async def get_pool(request: Request) -> JSONResponse:
    pool = await _service(request).get_pool(request.path_params["pool_id"])
    return JSONResponse(_pool_json(pool))


async def find_pool_by_invite_code(request: Request) -> JSONResponse:
    pool = await _service(request).find_pool_by_invite_code(request.path_params["invite_code"])
    return JSONResponse(_pool_json(pool))


async def lock_pool(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    pool_id = request.path_params["pool_id"]
    pool = await _service(request).lock_pool(pool_id, is_commissioner=await _is_commissioner(request, user_id))
    return JSONResponse(_pool_json(pool))


async def complete_pool(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    pool_id = request.path_params["pool_id"]
    pool = await _service(request).complete_pool(pool_id, is_commissioner=await _is_commissioner(request, user_id))
    return JSONResponse(_pool_json(pool))


async def list_cells(request: Request) -> JSONResponse:
    cells = await _service(request).list_cells(request.path_params["pool_id"])
    return JSONResponse([cell.model_dump(mode="json") for cell in cells])


async def claim_cell(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    cell = await _service(request).claim_cell(
        request.path_params["pool_id"],
        request.path_params["cell_id"],
        user_id,
    )
    return JSONResponse(cell.model_dump(mode="json"))


async def release_cell(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    cell = await _service(request).release_cell(
        request.path_params["pool_id"],
        request.path_params["cell_id"],
        user_id,
        is_commissioner=await _is_commissioner(request, user_id),
    )
    return JSONResponse(cell.model_dump(mode="json"))


async def get_payouts(request: Request) -> JSONResponse:
    payouts = await _service(request).get_payouts(request.path_params["pool_id"])
    return JSONResponse(_payouts_json(payouts))


async def update_pot(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    body = await _parse_body(request, UpdatePotRequest)
    payouts = await _service(request).update_pot(
        request.path_params["pool_id"],
        body.total_pot,
        body.payout_structure,
        is_commissioner=await _is_commissioner(request, user_id),
    )
    return JSONResponse(_payouts_json(payouts))


async def record_period_score(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    body = await _parse_body(request, PeriodScoreRequest)
    pool = await _service(request).record_period_score(
        request.path_params["pool_id"],
        body.period,
        body.score,
        is_commissioner=await _is_commissioner(request, user_id),
    )
    return JSONResponse(_pool_json(pool))


async def get_winners(request: Request) -> JSONResponse:
    winners = await _service(request).refresh_winners(request.path_params["pool_id"])
    return JSONResponse({period.value: winner.model_dump(mode="json") for period, winner in winners.items()})


async def strip_standings(request: Request) -> JSONResponse:
    standings = await _service(request).strip_standings(request.path_params["pool_id"])
    return JSONResponse([standing.model_dump(mode="json") for standing in standings])


async def list_matchups(request: Request) -> JSONResponse:
    raw_week = request.query_params.get("week")
    week = None
    if raw_week is not None:
        try:
            week = int(raw_week)
        except ValueError:
            raise RequestError("week must be an integer") from None
    matchups = await _service(request).list_matchups(request.path_params["pool_id"], week)
    return JSONResponse([m.model_dump(mode="json") for m in matchups])


async def add_matchup(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    body = await _parse_body(request, AddMatchupRequest)
    matchup = await _service(request).add_matchup(
        request.path_params["pool_id"],
        body,
        is_commissioner=await _is_commissioner(request, user_id),
    )
    return JSONResponse(matchup.model_dump(mode="json"), status_code=201)


async def submit_pick(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    body = await _parse_body(request, PickRequest)
    matchup = await _service(request).submit_pick(
        request.path_params["pool_id"],
        request.path_params["game_id"],
        user_id,
        body.side,
    )
    return JSONResponse(matchup.model_dump(mode="json"))


async def record_final_score(request: Request) -> JSONResponse:
    user_id = _caller_id(request)
    body = await _parse_body(request, FinalScoreRequest)
    matchup = await _service(request).record_final_score(
        request.path_params["pool_id"],
        request.path_params["game_id"],
        body.score,
        is_commissioner=await _is_commissioner(request, user_id),
    )
    return JSONResponse(matchup.model_dump(mode="json"))


async def calculate_pickem_scores(request: Request) -> JSONResponse:
    _caller_id(request)
    body = await _parse_body(request, ScorePickemRequest)
    pool_id = request.path_params["pool_id"]
    service = _service(request)
    if body.week is None:
        scoreboard = await service.calculate_pickem_scores(pool_id, body.options)
    else:
        scoreboard = await service.calculate_weekly_scores(pool_id, body.week, body.options)
    return JSONResponse(_scoreboard_json(scoreboard))


async def get_scoreboard(request: Request) -> JSONResponse:
    key = request.query_params.get("key", OVERALL_SCOREBOARD_KEY)
    scoreboard = await _service(request).get_scoreboard(request.path_params["pool_id"], key)
    if scoreboard is None:
        return _error_response(f"no scoreboard {key} has been calculated", "ScoreboardNotFound", 404)
    return JSONResponse(_scoreboard_json(scoreboard))


def create_app(
    settings: PoolServerSettings | None = None,
    service: PoolService | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = PoolServerSettings()

    # When the app builds its own service, it owns the DB lifecycle.
    owned_db: Database | None = None

    if service is None:
        db = Database(settings.database_path)
        db.connect()
        owned_db = db
        service = PoolService(
            SqlitePoolRepository(db),
            retry_policy=settings.retry_policy,
            operation_timeout_seconds=settings.operation_timeout_seconds,
            invite_code_length=settings.invite_code_length,
            invite_code_max_attempts=settings.invite_code_max_attempts,
        )

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/pools", create_pool, methods=["POST"]),
        Route("/pools/by-invite/{invite_code}", find_pool_by_invite_code, methods=["GET"]),
        Route("/pools/{pool_id}", get_pool, methods=["GET"]),
        Route("/pools/{pool_id}/lock", lock_pool, methods=["POST"]),
        Route("/pools/{pool_id}/complete", complete_pool, methods=["POST"]),
        Route("/pools/{pool_id}/cells", list_cells, methods=["GET"]),
        Route("/pools/{pool_id}/cells/{cell_id}/claim", claim_cell, methods=["POST"]),
        Route("/pools/{pool_id}/cells/{cell_id}/release", release_cell, methods=["POST"]),
        Route("/pools/{pool_id}/payouts", get_payouts, methods=["GET"]),
        Route("/pools/{pool_id}/pot", update_pot, methods=["PUT"]),
        Route("/pools/{pool_id}/scores", record_period_score, methods=["POST"]),
        Route("/pools/{pool_id}/winners", get_winners, methods=["GET"]),
        Route("/pools/{pool_id}/standings", strip_standings, methods=["GET"]),
        Route("/pools/{pool_id}/matchups", list_matchups, methods=["GET"]),
        Route("/pools/{pool_id}/matchups", add_matchup, methods=["POST"]),
        Route("/pools/{pool_id}/matchups/{game_id}/pick", submit_pick, methods=["POST"]),
        Route("/pools/{pool_id}/matchups/{game_id}/final", record_final_score, methods=["POST"]),
        Route("/pools/{pool_id}/pickem/scores", calculate_pickem_scores, methods=["POST"]),
        Route("/pools/{pool_id}/pickem/scoreboard", get_scoreboard, methods=["GET"]),
    ]

    @asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        yield
        if owned_db is not None:
            owned_db.close()

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={
            RequestError: handle_request_error,  # type: ignore[dict-item]
            PoolEngineError: handle_engine_error,
            TimeoutError: handle_engine_error,
        },
    )
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Content-Type", "X-User-Id"],
    )
    app.state.settings = settings
    app.state.service = service

    logger.info("pool server ready")
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    settings = PoolServerSettings()
    setup_logging(log_dir=settings.log_dir)
    return create_app(settings=settings)
