from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .errors import ErrorType, FileError, ModelError, ProcessingError, status_for_error
from .loader import ModelLoader
from .postprocess import build_render_instructions, select_top_detections, status_for_selection
from .types import Detection, DetectionParameters, LoaderState, RenderSurface, StatusSink

logger = logging.getLogger(__name__)

DEFAULT_DETECTION_TIMEOUT_S = 30.0


class DetectionController:
    """Owns the detector handle, the processing flag and the selected image.

    All methods run on one event loop. The ``is_processing`` check-and-set has
    no ``await`` in between, which is what makes it a sufficient guard.
    """

    def __init__(
        self,
        loader: ModelLoader,
        status: StatusSink,
        surface: RenderSurface,
        *,
        detection_timeout_s: float = DEFAULT_DETECTION_TIMEOUT_S,
        reload_on_demand: bool = False,
    ):
        self.loader = loader
        self.status = status
        self.surface = surface
        self.detection_timeout_s = detection_timeout_s
        self.reload_on_demand = reload_on_demand
        self.state = LoaderState()
        self.selected_image: Optional[Path] = None

    def _report(self, error: BaseException, kind: ErrorType) -> None:
        logger.error("[ERROR] %s: %s", kind.value, error)
        self.status.set_status(status_for_error(error, kind))

    async def initialize(self, max_retries: int = 3, cancel: asyncio.Event | None = None) -> bool:
        try:
            detector = await self.loader.load_detector(max_retries, cancel=cancel)
        except ModelError as e:
            self._report(e, ErrorType.MODEL)
            return False
        self.state.detector = detector
        self.state.model_loaded = True
        self.status.set_status("Ready to upload an image")
        return True

    def _release_image(self) -> None:
        if self.selected_image is not None:
            logger.debug("Removing previous upload %s", self.selected_image)
            self.selected_image.unlink(missing_ok=True)
            self.selected_image = None

    def select_image(self, path: Path, content_type: str | None) -> None:
        """Make ``path`` the image the next detection runs on."""
        if content_type is None or not content_type.startswith("image/"):
            logger.debug("Invalid file type: %s", content_type)
            path.unlink(missing_ok=True)
            self.status.set_status("Please select a valid image file.")
            raise FileError(f"Not an image: {content_type}")
        try:
            self.surface.clear_boxes()
            self._release_image()
            self.selected_image = path
        except OSError as e:
            self._report(e, ErrorType.FILE)
            self.reset_upload()
            raise FileError(str(e)) from e
        self.status.set_status('Image uploaded. Click "Detect Objects" to process.')

    def reset_upload(self) -> None:
        logger.debug("Resetting upload state")
        self._release_image()
        self.surface.clear_boxes()

    def reset(self) -> None:
        self.reset_upload()
        self.status.set_status("Ready to upload a new image")

    async def run_detection(self, image_source: Path | str | None, params: DetectionParameters) -> List[Detection] | None:
        """Detect, select and render. Returns ``None`` when the trigger is ignored.

        Raises ``ProcessingError`` after publishing the error status.
        """
        logger.debug(
            "Detect requested: image=%s detector=%s processing=%s loaded=%s",
            bool(image_source),
            self.state.detector is not None,
            self.state.is_processing,
            self.state.model_loaded,
        )
        if not image_source:
            logger.debug("No image selected, ignoring")
            return None

        if self.state.detector is None:
            if not self.reload_on_demand:
                logger.debug("Detector not loaded, ignoring")
                return None
            logger.debug("Attempting to re-initialize the detector")
            if not await self.initialize(1) or self.state.detector is None:
                self.status.set_status("Model not loaded. Please refresh the page and try again.")
                return None

        if self.state.is_processing:
            logger.debug("Already processing an image, ignoring")
            return None

        self.state.is_processing = True
        try:
            self.status.set_status("Detecting objects...")
            self.surface.clear_boxes()
            logger.debug("Detection parameters: %s", params)
            try:
                raw = await asyncio.wait_for(
                    self.state.detector(str(image_source), threshold=params.threshold, percentage=True),
                    timeout=self.detection_timeout_s,
                )
            except asyncio.TimeoutError as e:
                raise ProcessingError(f"Detection timed out after {self.detection_timeout_s:g} seconds") from e

            detections = [Detection.from_raw(r) for r in raw]
            logger.debug("Raw detection results: %d", len(detections))
            selected = select_top_detections(detections, params.max_objects)
            self.status.set_status(status_for_selection(len(selected), params.max_objects))
            for instruction in build_render_instructions(selected):
                self.surface.add_box(instruction)
            return selected
        except Exception as e:
            self._report(e, ErrorType.PROCESSING)
            if isinstance(e, ProcessingError):
                raise
            raise ProcessingError(str(e)) from e
        finally:
            logger.debug("Processing complete, resetting processing flag")
            self.state.is_processing = False
