import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    log_level: str = os.getenv("BJ_LOG_LEVEL", "INFO")

    # External card source (deckofcardsapi compatible)
    deck_api_url: str = os.getenv("BJ_DECK_API_URL", "https://deckofcardsapi.com/api")
    deck_api_timeout_seconds: float = float(os.getenv("BJ_DECK_API_TIMEOUT_SECONDS", "5"))

    # Per-room game config defaults
    starting_balance: int = int(os.getenv("BJ_STARTING_BALANCE", "1000"))
    max_players: int = int(os.getenv("BJ_MAX_PLAYERS", "6"))
    betting_time_limit_seconds: int = int(os.getenv("BJ_BETTING_TIME_LIMIT_SECONDS", "60"))
    turn_time_limit_seconds: int = int(os.getenv("BJ_TURN_TIME_LIMIT_SECONDS", "30"))
    allow_balance_reset: bool = os.getenv("BJ_ALLOW_BALANCE_RESET", "true").lower() == "true"
    num_decks: int = int(os.getenv("BJ_NUM_DECKS", "6"))

    # Concurrency
    lock_ttl_ms: int = int(os.getenv("BJ_LOCK_TTL_MS", "10000"))
    action_retries: int = int(os.getenv("BJ_ACTION_RETRIES", "3"))
    retry_backoff_ms: int = int(os.getenv("BJ_RETRY_BACKOFF_MS", "50"))

    # Event stream
    sse_queue_size: int = int(os.getenv("BJ_SSE_QUEUE_SIZE", "256"))
    sse_keepalive_seconds: float = float(os.getenv("BJ_SSE_KEEPALIVE_SECONDS", "15"))


settings = Settings()
