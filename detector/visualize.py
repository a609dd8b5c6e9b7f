from __future__ import annotations

from pathlib import Path
from typing import Iterable

import numpy as np

from .postprocess import hsl_to_bgr
from .types import RenderInstruction


def _draw_legend(out: np.ndarray, labels: list[str], counts: dict[str, int], colors: dict[str, tuple[int, int, int]]) -> None:
    """Draw a simple legend on the image (top-right)."""
    import cv2

    if not labels:
        return

    pad = 10
    line_h = 22
    box_w = 220
    box_h = pad * 2 + line_h * len(labels)

    h, w = out.shape[:2]
    x2 = w - 10
    y1 = 10
    x1 = max(10, x2 - box_w)
    y2 = min(h - 10, y1 + box_h)

    overlay = out.copy()
    cv2.rectangle(overlay, (x1, y1), (x2, y2), (255, 255, 255), -1)
    out[:] = cv2.addWeighted(overlay, 0.75, out, 0.25, 0)
    cv2.rectangle(out, (x1, y1), (x2, y2), (203, 213, 225), 1)

    y = y1 + pad + 16
    for name in labels:
        cv2.rectangle(out, (x1 + pad, y - 12), (x1 + pad + 14, y + 2), colors[name], -1)
        txt = f"{name}: {counts.get(name, 0)}"
        cv2.putText(out, txt, (x1 + pad + 22, y), cv2.FONT_HERSHEY_SIMPLEX, 0.55, (15, 23, 42), 2)
        y += line_h


def instruction_to_pixels(instruction: RenderInstruction, width: int, height: int) -> tuple[int, int, int, int]:
    """Percent placement -> absolute ``(x1, y1, x2, y2)`` for a ``width`` x ``height`` image."""
    x1 = int(round(instruction.left / 100 * width))
    y1 = int(round(instruction.top / 100 * height))
    x2 = int(round((instruction.left + instruction.width) / 100 * width))
    y2 = int(round((instruction.top + instruction.height) / 100 * height))
    return x1, y1, x2, y2


def draw_instructions_bgr(image_bgr: np.ndarray, instructions: Iterable[RenderInstruction], legend: bool = True) -> np.ndarray:
    """Draw bounding boxes and labels on a copy of the image (BGR)."""
    import cv2  # lazy

    out = image_bgr.copy()
    h, w = out.shape[:2]
    label_counts: dict[str, int] = {}
    label_colors: dict[str, tuple[int, int, int]] = {}
    for ins in instructions:
        x1, y1, x2, y2 = instruction_to_pixels(ins, w, h)
        color = hsl_to_bgr(ins.color)
        label_colors.setdefault(ins.label, color)
        label_counts[ins.label] = label_counts.get(ins.label, 0) + 1

        cv2.rectangle(out, (x1, y1), (x2, y2), color, 2)
        (tw, th), baseline = cv2.getTextSize(ins.text, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 2)
        cv2.rectangle(out, (x1, max(0, y1 - th - baseline - 6)), (x1 + tw + 6, y1), color, -1)
        cv2.putText(out, ins.text, (x1 + 3, y1 - 4), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2)

    if legend and label_counts:
        # sort by count desc
        names = sorted(label_counts.keys(), key=lambda k: (-label_counts[k], k))
        _draw_legend(out, names[:12], label_counts, label_colors)
    return out


class OpenCVSurface:
    """Render surface that rasterizes boxes onto a BGR image."""

    def __init__(self, image_bgr: np.ndarray):
        self.image_bgr = image_bgr
        self.instructions: list[RenderInstruction] = []

    def add_box(self, instruction: RenderInstruction) -> None:
        self.instructions.append(instruction)

    def clear_boxes(self) -> None:
        self.instructions.clear()

    def render(self) -> np.ndarray:
        return draw_instructions_bgr(self.image_bgr, self.instructions)


def save_image_bgr(path: Path, image_bgr: np.ndarray) -> None:
    import cv2  # lazy

    path.parent.mkdir(parents=True, exist_ok=True)
    ok = cv2.imwrite(str(path), image_bgr)
    if not ok:
        raise ValueError(f"Failed to write image: {path}")
