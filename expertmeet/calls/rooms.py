from __future__ import annotations

import secrets
import time


def generate_room_id() -> str:
    return f"room_{secrets.token_hex(6)}_{int(time.time() * 1000)}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"
