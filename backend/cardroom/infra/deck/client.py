import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from cardroom.config import settings
from cardroom.domain.errors import DeckError
from cardroom.domain.models.session import Card
from cardroom.domain.rules.blackjack_rules import card_from_code

logger = logging.getLogger(__name__)


class DeckClient:
    """Client for a deckofcardsapi compatible card source.

    Every call is a GET; any transport error, non-2xx status or
    ``"success": false`` body is raised as DeckError so the enclosing
    action fails without touching the stored session.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = (base_url or settings.deck_api_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or settings.deck_api_timeout_seconds
        )
        self._session = session
        self._owns_session = session is None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self._client().get(url, params=params) as resp:
                if resp.status >= 400:
                    raise DeckError(f"Card source returned {resp.status} for {path}")
                try:
                    payload = await resp.json(content_type=None)
                except ValueError as exc:
                    raise DeckError(f"Card source sent a non-JSON body for {path}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Card source request failed: %s %s", path, exc)
            raise DeckError(f"Card source request failed: {path}") from exc
        if not isinstance(payload, dict):
            raise DeckError(f"Unexpected card source response for {path}")
        if payload.get("success") is False:
            raise DeckError(payload.get("error") or f"Card source rejected {path}")
        return payload

    def _cards(self, raw_cards: Any) -> List[Card]:
        if not isinstance(raw_cards, list):
            raise DeckError("Card source sent malformed cards")
        cards = []
        for raw in raw_cards:
            try:
                cards.append(card_from_code(raw["code"], raw.get("image")))
            except (KeyError, TypeError, AttributeError, ValueError) as exc:
                raise DeckError(f"Card source sent a malformed card: {raw!r}") from exc
        return cards

    async def create_deck(self, num_decks: int = 6, jokers: bool = False) -> str:
        payload = await self._get(
            "/deck/new/shuffle/",
            {"deck_count": num_decks, "jokers_enabled": "true" if jokers else "false"},
        )
        deck_id = payload.get("deck_id")
        if not deck_id:
            raise DeckError("Deck ID not found.")
        logger.info("Created deck %s (%s decks)", deck_id, num_decks)
        return deck_id

    async def draw(self, deck_id: str, pile: str, count: int = 1) -> List[Card]:
        """Draw ``count`` cards from the deck into ``pile`` and return them in draw order."""
        if count < 0:
            raise ValueError("Count must be non-negative")
        payload = await self._get(f"/deck/{deck_id}/draw/", {"count": count})
        cards = self._cards(payload.get("cards") or [])
        if len(cards) != count:
            raise DeckError(f"Deck {deck_id} returned {len(cards)} of {count} cards")
        await self.add_to_pile(deck_id, pile, [c.code for c in cards])
        return cards

    async def add_to_pile(self, deck_id: str, pile: str, codes: List[str]) -> bool:
        if not codes:
            return True
        await self._get(f"/deck/{deck_id}/pile/{pile}/add/", {"cards": ",".join(codes)})
        return True

    async def remove_from_pile(self, deck_id: str, pile: str, codes: List[str]) -> bool:
        if not codes:
            return True
        await self._get(f"/deck/{deck_id}/pile/{pile}/draw/", {"cards": ",".join(codes)})
        return True

    async def list_pile(self, deck_id: str, pile: str) -> List[Card]:
        payload = await self._get(f"/deck/{deck_id}/pile/{pile}/list/")
        piles = payload.get("piles") or {}
        raw_cards = (piles.get(pile) or {}).get("cards") or []
        return self._cards(raw_cards)

    async def return_all_and_shuffle(self, deck_id: str) -> bool:
        await self._get(f"/deck/{deck_id}/shuffle/")
        return True
