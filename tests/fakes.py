"""Test doubles shared by unit and e2e tests."""

from typing import List

from src.pipeline.dispatch import DrainTrigger

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PROCESSED_BYTES = b"\x89PNG\r\n\x1a\nprocessed"


class RecordingTrigger(DrainTrigger):
    """Remembers the limits it was signalled with instead of draining."""

    def __init__(self, result: bool = True):
        self.limits: List[int] = []
        self.result = result

    async def signal(self, limit: int) -> bool:
        self.limits.append(limit)
        return self.result


def fake_remover(image_bytes: bytes) -> bytes:
    return PROCESSED_BYTES
