"""Post-processing of raw detector output into render instructions.

Everything in this module is pure: the same detections and parameters always
produce the same selection, colors and box placement.
"""

from __future__ import annotations

import colorsys
import math
import re
from typing import Iterable, List, Sequence

from .types import Box, Detection, RenderInstruction

NO_OBJECTS_STATUS = "No objects detected. Try another image or adjust sensitivity."

_HSL_RE = re.compile(r"^hsl\(\s*(\d+(?:\.\d+)?)\s*,\s*(\d+(?:\.\d+)?)%\s*,\s*(\d+(?:\.\d+)?)%\s*\)$")


def select_top_detections(detections: Iterable[Detection], max_objects: int) -> List[Detection]:
    """Highest scores first, at most ``max_objects`` entries.

    ``sorted`` is stable, so equal scores keep their original relative order.
    """
    if max_objects <= 0:
        return []
    ranked = sorted(detections, key=lambda d: d.score, reverse=True)
    return ranked[:max_objects]


def status_for_selection(count: int, max_objects: int) -> str:
    if count == 0:
        return NO_OBJECTS_STATUS
    # A selection that exactly fills the cap is reported as capped too.
    if count >= max_objects:
        return f"Showing top {count} objects (maximum set to {max_objects})."
    return f"Detected {count} objects."


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_code_units(text: str) -> Iterable[int]:
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def label_hash(label: str) -> int:
    """32-bit signed string hash (``h * 31 + code`` with wrap-around)."""
    h = 0
    for code in _utf16_code_units(label):
        h = _to_int32((h << 5) - h + code)
    return h


def color_for_label(label: str) -> str:
    """Deterministic CSS color for a label; identical labels always share a color."""
    hue = abs(label_hash(label)) % 360
    return f"hsl({hue}, 70%, 45%)"


def hsl_to_bgr(color: str) -> tuple[int, int, int]:
    """Convert an ``hsl(H, S%, L%)`` string into an OpenCV BGR tuple."""
    m = _HSL_RE.match(color.strip())
    if m is None:
        raise ValueError(f"Unsupported color: {color!r}")
    hue, sat, light = (float(g) for g in m.groups())
    r, g, b = colorsys.hls_to_rgb(hue / 360.0, light / 100.0, sat / 100.0)
    return int(round(b * 255)), int(round(g * 255)), int(round(r * 255))


def place_box(box: Box) -> dict[str, float]:
    # No clamping: out-of-range coordinates pass through unchanged.
    return {
        "left": 100 * box.xmin,
        "top": 100 * box.ymin,
        "width": 100 * (box.xmax - box.xmin),
        "height": 100 * (box.ymax - box.ymin),
    }


def to_render_instruction(detection: Detection) -> RenderInstruction:
    placement = place_box(detection.box)
    return RenderInstruction(
        label=detection.label,
        score_percent=int(math.floor(detection.score * 100)),
        color=color_for_label(detection.label),
        **placement,
    )


def build_render_instructions(detections: Sequence[Detection]) -> List[RenderInstruction]:
    return [to_render_instruction(d) for d in detections]


def progress_percent(value: float) -> int:
    """Round half up, matching how progress percentages are displayed."""
    return int(math.floor(value * 100 + 0.5))
