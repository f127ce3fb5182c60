from typing import List, Optional

from cardroom.domain.models.session import Card

DEALER_STANDS_AT = 17
BLACKJACK = 21

SUITS = {
    "S": "SPADES",
    "D": "DIAMONDS",
    "C": "CLUBS",
    "H": "HEARTS",
    "1": "BLACK",
    "2": "RED",
}
VALUES = {
    "A": "ACE",
    "2": "2",
    "3": "3",
    "4": "4",
    "5": "5",
    "6": "6",
    "7": "7",
    "8": "8",
    "9": "9",
    "0": "10",
    "J": "JACK",
    "Q": "QUEEN",
    "K": "KING",
    "X": "JOKER",
}
CARD_IMAGE_URL = "https://deckofcardsapi.com/static/img/{code}.png"


def card_from_code(code: str, image: Optional[str] = None) -> Card:
    """Build a card from a two character deckofcardsapi code such as ``AS`` or ``0H``."""
    if not code or len(code) != 2:
        raise ValueError(f"Invalid card code: '{code}'")
    code = code.upper()
    value = VALUES.get(code[0])
    if value is None:
        raise ValueError(f"Invalid card value: '{code[0]}'")
    suit = SUITS.get(code[1])
    if suit is None:
        raise ValueError(f"Invalid card suit: '{code[1]}'")
    return Card(
        value=value,
        suit=suit,
        code=code,
        image=image or CARD_IMAGE_URL.format(code=code),
    )


def card_value(value: str) -> int:
    value = value.upper()
    if value in {"JACK", "QUEEN", "KING"}:
        return 10
    if value == "ACE":
        return 11
    try:
        return int(value)
    except ValueError:
        # jokers and face-down placeholders count for nothing
        return 0


def score(cards: List[Card], target: int = BLACKJACK, count_face_down: bool = False) -> int:
    total = 0
    aces = 0
    for card in cards:
        if card.face_down and not count_face_down:
            continue
        if card.value.upper() == "ACE":
            aces += 1
        total += card_value(card.value)

    while total > target and aces > 0:
        total -= 10
        aces -= 1
    return total


def is_bust(cards: List[Card]) -> bool:
    return score(cards) > BLACKJACK


def compare(player: List[Card], dealer: List[Card]) -> int:
    """Positive if the player wins, negative if the dealer wins, zero on a push."""
    player_value = score(player)
    dealer_value = score(dealer)

    if player_value > BLACKJACK:
        return -1
    if dealer_value > BLACKJACK:
        return 1
    # a two card blackjack beats a multi-card 21
    if player_value == BLACKJACK and dealer_value == BLACKJACK:
        return len(dealer) - len(player)
    return player_value - dealer_value


def hide_cards(cards: List[Card], *hidden_indices: int) -> List[Card]:
    return [
        Card(face_down=True) if idx in hidden_indices else card
        for idx, card in enumerate(cards)
    ]
