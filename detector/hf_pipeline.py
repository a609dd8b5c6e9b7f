from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Mapping

from huggingface_hub import snapshot_download
from tqdm.auto import tqdm

from .errors import FileError
from .types import ProgressCallback

logger = logging.getLogger(__name__)

# Options understood by the browser build of the library that have no
# equivalent in the Python pipeline() call.
_IGNORED_OPTIONS = {"quantized", "use_auth_token"}
_DOWNLOAD_OPTIONS = {"revision", "cache_dir", "local_files_only"}

# Xenova/* repos hold ONNX exports for transformers.js only; the Python
# pipeline loads the PyTorch checkpoint they were converted from.
ONNX_EXPORT_SOURCES = {
    "Xenova/yolos-tiny": "hustvl/yolos-tiny",
    "Xenova/yolos-small": "hustvl/yolos-small",
    "Xenova/yolos-small-300": "hustvl/yolos-small-300",
    "Xenova/yolos-small-dwr": "hustvl/yolos-small-dwr",
    "Xenova/detr-resnet-50": "facebook/detr-resnet-50",
    "Xenova/detr-resnet-101": "facebook/detr-resnet-101",
}

CHECKPOINT_PATTERNS = ["*.json", "*.txt", "*.safetensors", "*.bin"]


def resolve_checkpoint(model_id: str) -> str:
    return ONNX_EXPORT_SOURCES.get(model_id, model_id)


def progress_tqdm(callback: ProgressCallback, name: str) -> type:
    """tqdm class that reports ``n / total`` of a download to ``callback``."""

    class _ProgressTqdm(tqdm):
        def __init__(self, *args, **kwargs):
            # Updates are reported even when the hub disables its own bars.
            kwargs["mininterval"] = 0
            kwargs["disable"] = False
            super().__init__(*args, **kwargs)

        def _report(self) -> None:
            if self.total:
                callback({"status": "progress", "name": name, "value": min(1.0, self.n / self.total)})

        def update(self, n=1):
            out = super().update(n)
            self._report()
            return out

        def close(self):
            if not getattr(self, "_reported_close", False):
                self._reported_close = True
                self._report()
            super().close()

    return _ProgressTqdm


class TransformersDetector:
    """Async wrapper around a transformers object-detection pipeline."""

    def __init__(self, pipe: Callable[..., Any]):
        self._pipe = pipe

    def _run(self, image_source: str, threshold: float, percentage: bool) -> List[dict]:
        from PIL import Image, UnidentifiedImageError  # lazy

        try:
            with Image.open(image_source) as im:
                image = im.convert("RGB")
        except (OSError, UnidentifiedImageError) as e:
            raise FileError(f"Failed to read image: {image_source}") from e

        raw = self._pipe(image, threshold=threshold)
        w, h = image.size
        sx, sy = (1.0 / w, 1.0 / h) if percentage else (1.0, 1.0)
        return [
            {
                "label": str(r["label"]),
                "score": float(r["score"]),
                "box": {
                    "xmin": r["box"]["xmin"] * sx,
                    "ymin": r["box"]["ymin"] * sy,
                    "xmax": r["box"]["xmax"] * sx,
                    "ymax": r["box"]["ymax"] * sy,
                },
            }
            for r in raw
        ]

    async def __call__(self, image_source: str, threshold: float = 0.9, percentage: bool = False) -> List[dict]:
        return await asyncio.to_thread(self._run, image_source, threshold, percentage)


class TransformersPipelineFactory:
    """Adapts ``transformers.pipeline`` to the ``factory(task, model_id, options)`` shape.

    The checkpoint is fetched with ``huggingface_hub`` first so download
    progress can be reported, then the pipeline is built from the local copy.
    """

    def __init__(self, pipeline_fn: Callable[..., Any], download_fn: Callable[..., str] = snapshot_download):
        self._pipeline_fn = pipeline_fn
        self._download_fn = download_fn

    def _build(self, task: str, model_id: str, options: Mapping[str, Any], progress: ProgressCallback | None) -> Any:
        repo_id = resolve_checkpoint(model_id)
        if repo_id != model_id:
            logger.info("Loading %s from its PyTorch checkpoint %s", model_id, repo_id)

        kwargs: dict[str, Any] = {}
        download_kwargs: dict[str, Any] = {}
        for key, value in options.items():
            if key == "progress_callback":
                continue
            if key in _IGNORED_OPTIONS:
                logger.debug("Ignoring option %s=%r", key, value)
            elif key in _DOWNLOAD_OPTIONS:
                if value is not None:
                    download_kwargs[key] = str(value) if key == "cache_dir" else value
            else:
                kwargs[key] = value
        if progress is not None:
            download_kwargs["tqdm_class"] = progress_tqdm(progress, repo_id)

        local_path = self._download_fn(repo_id, allow_patterns=CHECKPOINT_PATTERNS, **download_kwargs)
        return self._pipeline_fn(task, model=str(local_path), **kwargs)

    async def __call__(self, task: str, model_id: str, options: dict) -> TransformersDetector:
        progress: ProgressCallback | None = options.get("progress_callback")
        thread_progress: ProgressCallback | None = None
        if progress is not None:
            progress({"status": "initiate", "name": model_id})
            loop = asyncio.get_running_loop()

            # Downloads run in a worker thread; hand events back to the loop.
            def thread_progress(event: Mapping[str, Any]) -> None:
                loop.call_soon_threadsafe(progress, dict(event))

        pipe = await asyncio.to_thread(self._build, task, model_id, options, thread_progress)
        if progress is not None:
            progress({"status": "done", "name": model_id})
        return TransformersDetector(pipe)
