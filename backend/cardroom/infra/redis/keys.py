# Redis key builders


def room_state(rid: str) -> str:
    return f"bj:room:{rid}:state"


def room_config(rid: str) -> str:
    return f"bj:room:{rid}:config"


def rooms_set() -> str:
    return "bj:rooms"


def players_directory() -> str:
    return "bj:players"


def room_lock(rid: str) -> str:
    return f"bj:lock:{rid}"
