"""FastAPI application entrypoint and REST/WebSocket surface.

This module exposes the game state, dilemma catalog, presence, and choice
APIs used by the browser client, plus the live-update WebSocket.
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from .config import settings
from .db import engine, init_db
from .dilemmas import DILEMMA_LIBRARY, get_dilemma
from .errors import (
    AlreadySubmitted,
    ConnectionUnavailable,
    GameError,
    GameFull,
    InvalidDilemmaIndex,
    RoundClosed,
    TransactionConflict,
    UnknownParticipant,
)
from .history import list_round_results, serialize_round_result
from .messaging import ConnectionManager
from .schemas import ChoiceCreate, PlayerJoin, PlayerRename
from .session import GameSession
from .store import DocumentStore
from .sync import SyncHub

ERROR_STATUS: dict[type[GameError], int] = {
    UnknownParticipant: 404,
    InvalidDilemmaIndex: 404,
    AlreadySubmitted: 409,
    RoundClosed: 409,
    GameFull: 409,
    TransactionConflict: 409,
    ConnectionUnavailable: 503,
}

ws_manager = ConnectionManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    game = GameSession(
        SyncHub(DocumentStore(engine)),
        ws_manager,
        session_factory=lambda: Session(engine),
    )
    app.state.game = game
    await game.start()
    try:
        yield
    finally:
        await game.close()


app = FastAPI(title="Ethical Ecosystem Game", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_session():
    with Session(engine) as session:
        yield session


def get_game(request: Request) -> GameSession:
    return request.app.state.game


def _http_error(exc: GameError) -> HTTPException:
    return HTTPException(status_code=ERROR_STATUS.get(type(exc), 400), detail={"code": exc.code, "message": str(exc)})


@app.get("/api/v1/state")
async def get_state(game: GameSession = Depends(get_game)):
    return await game.snapshot()


@app.get("/api/v1/status")
async def get_status(game: GameSession = Depends(get_game)):
    return {
        "connected": game.hub.connected,
        "phase": game.rounds.phase.value,
        "connections": ws_manager.count,
    }


@app.get("/api/v1/dilemmas")
def list_dilemmas():
    return [dilemma.to_payload() for dilemma in DILEMMA_LIBRARY]


@app.get("/api/v1/dilemmas/{index}")
def get_dilemma_by_index(index: int):
    try:
        return get_dilemma(index).to_payload()
    except InvalidDilemmaIndex as exc:
        raise _http_error(exc) from exc


@app.post("/api/v1/players")
async def join_game(payload: PlayerJoin, game: GameSession = Depends(get_game)):
    try:
        participant = await game.join(
            participant_id=payload.participant_id,
            name=payload.name,
            color=payload.color,
        )
    except GameError as exc:
        raise _http_error(exc) from exc
    return {"participant": participant.to_payload()}


@app.patch("/api/v1/players/{participant_id}")
async def rename_player(participant_id: str, payload: PlayerRename, game: GameSession = Depends(get_game)):
    try:
        participant = await game.presence.rename(participant_id, payload.name)
    except GameError as exc:
        raise _http_error(exc) from exc
    return {"participant": participant.to_payload()}


@app.post("/api/v1/players/{participant_id}/heartbeat")
async def heartbeat(participant_id: str, game: GameSession = Depends(get_game)):
    try:
        participant = await game.presence.touch(participant_id)
    except GameError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "last_active": participant.last_active}


@app.delete("/api/v1/players/{participant_id}")
async def leave_game(participant_id: str, game: GameSession = Depends(get_game)):
    try:
        await game.leave(participant_id)
    except GameError as exc:
        raise _http_error(exc) from exc
    return {"ok": True}


@app.get("/api/v1/rounds/current")
async def get_current_round(game: GameSession = Depends(get_game)):
    try:
        return {"round": await game.round_view()}
    except GameError as exc:
        raise _http_error(exc) from exc


@app.post("/api/v1/rounds/current/choices")
async def submit_choice(payload: ChoiceCreate, game: GameSession = Depends(get_game)):
    try:
        record = await game.choose(payload.participant_id, payload.option)
    except GameError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "choice": record.model_dump()}


@app.get("/api/v1/history")
def get_history(limit: int = 50, session: Session = Depends(get_session)):
    rows = list_round_results(session, limit=max(1, min(limit, 500)))
    return [serialize_round_result(row) for row in rows]


@app.websocket("/ws/game")
async def game_ws(websocket: WebSocket):
    game: GameSession = websocket.app.state.game
    connection_id = await ws_manager.connect(websocket)
    try:
        await websocket.send_json(await game.snapshot())
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "error", "code": "invalid_message", "detail": "expected JSON"})
                continue
            await websocket.send_json(await _handle_ws_message(game, connection_id, message))
    except WebSocketDisconnect:
        pass
    finally:
        await ws_manager.disconnect(connection_id)
        await game.disconnect(connection_id)


async def _handle_ws_message(game: GameSession, connection_id: str, message: Any) -> dict[str, Any]:
    if not isinstance(message, dict):
        return {"type": "error", "code": "invalid_message", "detail": "expected a JSON object"}
    kind = message.get("type")
    participant_id = game.participant_for(connection_id)
    try:
        if kind == "join":
            participant = await game.join(
                participant_id=participant_id,
                name=_optional_str(message.get("name")),
                color=_optional_str(message.get("color")),
                connection_id=connection_id,
            )
            return {"type": "joined", "participant": participant.to_payload()}
        if participant_id is None:
            return {"type": "error", "code": UnknownParticipant.code, "detail": "join before sending this message"}
        if kind == "choose":
            option = message.get("option")
            if option not in {"A", "B"}:
                return {"type": "error", "code": "invalid_option", "detail": "option must be 'A' or 'B'"}
            record = await game.choose(participant_id, option)
            return {"type": "choice_accepted", "choice": record.model_dump()}
        if kind == "rename":
            name = _optional_str(message.get("name"))
            if not name:
                return {"type": "error", "code": "invalid_name", "detail": "name must be a non-empty string"}
            participant = await game.presence.rename(participant_id, name[:40])
            return {"type": "renamed", "participant": participant.to_payload()}
        if kind == "heartbeat":
            participant = await game.presence.touch(participant_id)
            return {"type": "heartbeat", "last_active": participant.last_active}
    except GameError as exc:
        return {"type": "error", "code": exc.code, "detail": str(exc)}
    return {"type": "error", "code": "unknown_message", "detail": f"unsupported message type: {kind!r}"}


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
