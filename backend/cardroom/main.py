import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardroom.api.http.health import router as health_router
from cardroom.api.http.rooms import router as rooms_router
from cardroom.api.sse.events import router as events_router
from cardroom.api.sse.hub import RoomHub
from cardroom.config import settings
from cardroom.domain.errors import GameError, InternalError
from cardroom.domain.models.messages import ErrorMessage
from cardroom.infra.deck.client import DeckClient
from cardroom.infra.redis.client import get_redis
from cardroom.infra.redis.repo import RoomRepository
from cardroom.services import round_service

logger = logging.getLogger(__name__)


async def _game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    message = exc.message
    if isinstance(exc, InternalError):
        logger.exception("Internal error on %s %s", request.method, request.url.path, exc_info=exc)
        message = "Something went wrong, please try again."
    body = ErrorMessage(code=exc.code, message=message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def create_app(
    repository: Optional[RoomRepository] = None,
    deck: Optional[DeckClient] = None,
    hub: Optional[RoomHub] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)
        app.state.repository = repository or RoomRepository(get_redis())
        app.state.deck = deck or DeckClient()
        app.state.hub = hub or RoomHub()
        app.state.games = {round_service.GAME_MODE: round_service.perform_action}
        try:
            yield
        finally:
            await app.state.hub.close_all()
            if deck is None:
                await app.state.deck.close()

    app = FastAPI(title="Blackjack Rooms", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(GameError, _game_error_handler)

    app.include_router(health_router)
    app.include_router(rooms_router)
    app.include_router(events_router)
    return app


app = create_app()
