from __future__ import annotations

import secrets
import uuid


def new_uuid() -> str:
    return str(uuid.uuid4())


def new_device_id() -> str:
    # 64 random bits: collisions across one user's installs are not a practical concern.
    return secrets.token_hex(8)


def format_record_id(device_id: str, counter: int) -> str:
    return f"{device_id}-{counter}"
