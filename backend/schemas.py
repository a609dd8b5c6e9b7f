from __future__ import annotations

from typing import List

from pydantic import BaseModel


class StatusResponse(BaseModel):
    status: str
    model_loaded: bool
    is_processing: bool
    image_selected: bool


class UploadResponse(BaseModel):
    status: str
    filename: str


class BoxInstruction(BaseModel):
    label: str
    score_percent: int
    color: str
    left: float
    top: float
    width: float
    height: float
    text: str


class DetectResponse(BaseModel):
    status: str
    threshold: float
    max_objects: int
    count: int
    duration_ms: int
    boxes: List[BoxInstruction]
