from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol

# Async callable returned by a pipeline factory:
#   await detector(image_source, threshold=0.9, percentage=True) -> list[dict]
DetectorCallable = Callable[..., Awaitable[list[dict]]]

# factory(task, model_id, options) -> awaitable detector
PipelineFactory = Callable[[str, str, dict], Awaitable[DetectorCallable]]

ProgressCallback = Callable[[Mapping[str, Any]], None]


@dataclass(frozen=True)
class Box:
    # Normalized [0, 1] coordinates relative to the image size
    xmin: float
    ymin: float
    xmax: float
    ymax: float


@dataclass(frozen=True)
class Detection:
    label: str
    score: float
    box: Box

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Detection":
        """Build a detection from the ``{label, score, box}`` mapping a pipeline returns."""
        b = raw["box"]
        return cls(
            label=str(raw["label"]),
            score=float(raw["score"]),
            box=Box(
                xmin=float(b["xmin"]),
                ymin=float(b["ymin"]),
                xmax=float(b["xmax"]),
                ymax=float(b["ymax"]),
            ),
        )


@dataclass(frozen=True)
class DetectionParameters:
    threshold: float
    max_objects: int


@dataclass(frozen=True)
class RenderInstruction:
    label: str
    score_percent: int
    color: str
    # Percentages of the rendering surface
    left: float
    top: float
    width: float
    height: float

    @property
    def text(self) -> str:
        return f"{self.label}: {self.score_percent}%"


@dataclass
class LoaderState:
    detector: DetectorCallable | None = None
    model_loaded: bool = False
    is_processing: bool = False


class StatusSink(Protocol):
    def set_status(self, message: str) -> None: ...


class RenderSurface(Protocol):
    def add_box(self, instruction: RenderInstruction) -> None: ...

    def clear_boxes(self) -> None: ...
