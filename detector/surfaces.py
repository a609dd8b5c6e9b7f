from __future__ import annotations

import logging
from dataclasses import asdict
from typing import List

from .types import RenderInstruction

logger = logging.getLogger(__name__)


class StatusBoard:
    """Single-line status display; keeps the latest message and the full history."""

    def __init__(self, initial: str = ""):
        self.message = initial
        self.history: List[str] = []

    def set_status(self, message: str) -> None:
        logger.debug("Status update: %s", message)
        self.message = message
        self.history.append(message)


class RecordingSurface:
    """Collects render instructions so they can be shipped to the browser as JSON."""

    def __init__(self) -> None:
        self.instructions: List[RenderInstruction] = []

    def add_box(self, instruction: RenderInstruction) -> None:
        logger.debug(
            "Drawing box for %s at left=%.2f%% top=%.2f%% width=%.2f%% height=%.2f%%",
            instruction.text,
            instruction.left,
            instruction.top,
            instruction.width,
            instruction.height,
        )
        self.instructions.append(instruction)

    def clear_boxes(self) -> None:
        logger.debug("Clearing detection boxes")
        self.instructions.clear()

    def to_jsonable(self) -> list[dict]:
        return [dict(asdict(i), text=i.text) for i in self.instructions]
