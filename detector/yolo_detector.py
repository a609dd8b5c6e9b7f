from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List

import numpy as np

from .errors import FileError, ModelError
from .types import ProgressCallback

logger = logging.getLogger(__name__)


class YOLODetector:
    """Ultralytics YOLO detector wrapper.

    This class lazily imports ultralytics to keep import time low. Calling the
    instance runs detection on an image path and returns pipeline-style
    ``{label, score, box}`` dicts, so it can stand in for a transformers
    object-detection pipeline.
    """

    def __init__(self, model_name: str = "yolov8n.pt"):
        self.model_name = model_name
        self._model = None

    def _load(self):
        if self._model is not None:
            return
        try:
            from ultralytics import YOLO  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ModelError(
                "Ultralytics is not installed or failed to import. "
                "Install the project dependencies and ensure your environment supports it."
            ) from e
        self._model = YOLO(self.model_name)

    def predict_image(self, image_bgr: np.ndarray, threshold: float = 0.25, percentage: bool = False) -> List[dict]:
        """Run inference on a BGR uint8 image."""
        self._load()
        assert self._model is not None

        # Ultralytics accepts numpy arrays (BGR ok); returns Results list
        results = self._model.predict(
            source=image_bgr,
            conf=threshold,
            verbose=False,
        )
        if not results:
            return []

        r0 = results[0]
        boxes = getattr(r0, "boxes", None)
        if boxes is None or boxes.xyxy is None:
            return []

        xyxy = boxes.xyxy.cpu().numpy()
        confs = boxes.conf.cpu().numpy()
        cls_ids = boxes.cls.cpu().numpy().astype(int)

        names = getattr(self._model, "names", None) or getattr(r0, "names", None) or {}
        h, w = image_bgr.shape[:2]
        sx, sy = (1.0 / w, 1.0 / h) if percentage else (1.0, 1.0)

        detections: List[dict] = []
        for (x1, y1, x2, y2), c, cid in zip(xyxy, confs, cls_ids):
            detections.append(
                {
                    "label": str(names.get(int(cid), str(int(cid)))),
                    "score": float(c),
                    "box": {
                        "xmin": float(x1) * sx,
                        "ymin": float(y1) * sy,
                        "xmax": float(x2) * sx,
                        "ymax": float(y2) * sy,
                    },
                }
            )
        return detections

    async def __call__(self, image_source: str, threshold: float = 0.25, percentage: bool = False) -> List[dict]:
        img = await asyncio.to_thread(load_image_bgr, Path(image_source))
        return await asyncio.to_thread(self.predict_image, img, threshold, percentage)


class YOLOPipelineFactory:
    """Pipeline factory backed by local Ultralytics weights.

    Hub model ids are not Ultralytics weights, so the configured weights file is
    loaded whatever ``model_id`` asks for.
    """

    def __init__(self, weights: str = "yolov8n.pt"):
        self.weights = weights

    async def __call__(self, task: str, model_id: str, options: dict) -> YOLODetector:
        if task != "object-detection":
            raise ModelError(f"Unsupported task for Ultralytics: {task}")
        progress: ProgressCallback | None = options.get("progress_callback")
        logger.debug("Serving %s with Ultralytics weights %s", model_id, self.weights)

        if progress is not None:
            progress({"status": "initiate", "name": self.weights})
        detector = YOLODetector(self.weights)
        await asyncio.to_thread(detector._load)
        if progress is not None:
            progress({"status": "done", "name": self.weights})
        return detector


def load_image_bgr(path: Path) -> np.ndarray:
    import cv2  # lazy

    img = cv2.imread(str(path))
    if img is None:
        raise FileError(f"Failed to read image: {path}")
    return img
