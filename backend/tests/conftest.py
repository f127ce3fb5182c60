import asyncio
import threading
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, Iterator, List, Optional, Tuple

import pytest
from redis import Redis

from cardroom.domain.errors import ConflictError, DeckError, NotFoundError
from cardroom.domain.models.messages import parse_action
from cardroom.domain.models.session import Card, GameConfig, Session
from cardroom.domain.rules.blackjack_rules import card_from_code
from cardroom.infra.redis.repo import StoredSession
from cardroom.services import round_service, table_service
from cardroom.utils.ids import new_id
from cardroom.utils.time import utc_now


def redis_available() -> bool:
    try:
        Redis.from_url("redis://localhost:6379/0").ping()
        return True
    except Exception:
        return False


@pytest.fixture
def room_id() -> str:
    return f"test-{uuid.uuid4()}"


class MemoryRepository:
    """RoomRepository stand-in keeping sessions as JSON with the same version semantics."""

    def __init__(self) -> None:
        self.sessions: Dict[str, tuple[str, int]] = {}
        self.configs: Dict[str, str] = {}
        self.players: Dict[str, str] = {}
        self.saves = 0
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def lock(self, rid: str) -> Iterator[None]:
        lock = self._locks.setdefault(rid, threading.Lock())
        if not lock.acquire(blocking=False):
            raise ConflictError("Room is busy, try again")
        try:
            yield
        finally:
            lock.release()

    def create_session(self, rid: str, session: Session, config: GameConfig) -> None:
        if rid in self.sessions:
            raise ConflictError(f"Room {rid} already exists.")
        self.sessions[rid] = (session.model_dump_json(), 1)
        self.configs[rid] = config.model_dump_json()

    def load_session(self, rid: str) -> StoredSession:
        if rid not in self.sessions:
            raise NotFoundError(f"Room {rid} not found.")
        raw, version = self.sessions[rid]
        return StoredSession(session=Session.model_validate_json(raw), version=version)

    def save_session(self, rid: str, session: Session, expected_version: int) -> int:
        if rid not in self.sessions:
            raise NotFoundError(f"Room {rid} not found.")
        _, version = self.sessions[rid]
        if version != expected_version:
            raise ConflictError(f"Room {rid} was modified concurrently.")
        self.sessions[rid] = (session.model_dump_json(), version + 1)
        self.saves += 1
        return version + 1

    def load_config(self, rid: str) -> GameConfig:
        raw = self.configs.get(rid)
        return GameConfig.model_validate_json(raw) if raw else GameConfig()

    def save_config(self, rid: str, config: GameConfig) -> None:
        self.configs[rid] = config.model_dump_json()

    def get_rooms(self) -> List[str]:
        return list(self.sessions)

    def register_player(self, name: str) -> str:
        player_id = new_id()
        self.players[player_id] = name
        return player_id

    def display_name(self, player_id: str) -> Optional[str]:
        return self.players.get(player_id)


class FakeDeck:
    """Card source dealing a scripted sequence of codes, then tens of spades."""

    def __init__(self, codes: Optional[List[str]] = None) -> None:
        self.codes = list(codes or [])
        self.piles: Dict[str, List[str]] = {}
        self.created = 0
        self.shuffles = 0
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise DeckError("Card source unavailable")

    async def create_deck(self, num_decks: int = 6, jokers: bool = False) -> str:
        self._check()
        self.created += 1
        return f"deck-{self.created}"

    async def draw(self, deck_id: str, pile: str, count: int = 1) -> List[Card]:
        self._check()
        cards = []
        for _ in range(count):
            code = self.codes.pop(0) if self.codes else "0S"
            cards.append(card_from_code(code))
        self.piles.setdefault(pile, []).extend(c.code for c in cards)
        return cards

    async def add_to_pile(self, deck_id: str, pile: str, codes: List[str]) -> bool:
        self._check()
        self.piles.setdefault(pile, []).extend(codes)
        return True

    async def remove_from_pile(self, deck_id: str, pile: str, codes: List[str]) -> bool:
        self._check()
        for code in codes:
            self.piles[pile].remove(code)
        return True

    async def list_pile(self, deck_id: str, pile: str) -> List[Card]:
        return [card_from_code(code) for code in self.piles.get(pile, [])]

    async def return_all_and_shuffle(self, deck_id: str) -> bool:
        self._check()
        self.shuffles += 1
        self.piles.clear()
        return True

    async def close(self) -> None:
        return None


class EventLog:
    def __init__(self) -> None:
        self.events: List[tuple[str, dict]] = []

    def __call__(self, event_type: str, payload: dict) -> None:
        self.events.append((event_type, payload))

    def of_type(self, event_type: str) -> List[dict]:
        return [payload for kind, payload in self.events if kind == event_type]


@pytest.fixture
def repository() -> MemoryRepository:
    return MemoryRepository()


@pytest.fixture
def deck() -> FakeDeck:
    return FakeDeck()


def make_config(**overrides) -> GameConfig:
    values = dict(
        starting_balance=1000,
        max_players=6,
        betting_time_limit=60,
        turn_time_limit=30,
        allow_balance_reset=True,
        num_decks=6,
    )
    values.update(overrides)
    return GameConfig(**values)


def seat_players(
    repository: MemoryRepository,
    deck: FakeDeck,
    names: List[str],
    config: Optional[GameConfig] = None,
) -> Tuple[str, List[str]]:
    pids = [table_service.register_player(repository, name) for name in names]
    rid, _ = table_service.create_room(repository, pids[0])
    for pid in pids[1:]:
        table_service.player_join(repository, rid, pid)
    asyncio.run(table_service.start_game(repository, deck, rid, config or make_config()))
    return rid, pids


def act(
    repository: MemoryRepository,
    deck: FakeDeck,
    rid: str,
    pid: str,
    action: str,
    data: Optional[dict] = None,
    emit: Optional[EventLog] = None,
) -> Session:
    return asyncio.run(
        round_service.perform_action(
            repository, deck, rid, pid, parse_action(action, data), emit
        )
    )


def stored(repository: MemoryRepository, rid: str) -> Session:
    return repository.load_session(rid).session


def expire_deadline(repository: MemoryRepository, rid: str) -> None:
    snapshot = repository.load_session(rid)
    snapshot.session.stage.deadline = utc_now() - timedelta(minutes=1)
    repository.save_session(rid, snapshot.session, snapshot.version)
