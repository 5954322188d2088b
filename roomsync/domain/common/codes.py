from __future__ import annotations

import random

# No I, O, 0 or 1: codes are read aloud and typed on phones.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 4

ANON_UID_PREFIX = "anon_"
_ANON_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def gen_room_code(n: int = ROOM_CODE_LENGTH, rng: random.Random | None = None) -> str:
    rng = rng or random
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(n))


def is_room_code(code: str) -> bool:
    return len(code) == ROOM_CODE_LENGTH and all(c in ROOM_CODE_ALPHABET for c in code)


def gen_anon_uid(rng: random.Random | None = None) -> str:
    rng = rng or random
    return ANON_UID_PREFIX + "".join(rng.choice(_ANON_ALPHABET) for _ in range(6))
