"""Model loading: pick a pipeline factory, then instantiate the detector with retries.

The factory is obtained from an ordered list of loading strategies (first one
that works wins). Instantiation is retried a fixed number of times with a
fixed delay between attempts, publishing a status line before every retry.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence

import requests

from .errors import ModelError, NetworkError
from .hf_pipeline import TransformersPipelineFactory
from .postprocess import progress_percent
from .types import DetectorCallable, PipelineFactory, StatusSink
from .yolo_detector import YOLOPipelineFactory

logger = logging.getLogger(__name__)

DEFAULT_TASK = "object-detection"
DEFAULT_MODEL_ID = "Xenova/yolos-tiny"
DEFAULT_RETRY_DELAY_S = 2.0
HUB_CONFIG_URL = "https://huggingface.co/{model_id}/resolve/main/config.json"

Sleep = Callable[[float], Awaitable[Any]]


class LoadingStrategy(Protocol):
    name: str

    def load(self) -> PipelineFactory: ...


class TransformersStrategy:
    """Dynamic import of the transformers ``pipeline`` entry point."""

    name = "transformers"

    def __init__(self, module_name: str = "transformers", attribute: str = "pipeline"):
        self.module_name = module_name
        self.attribute = attribute

    def load(self) -> PipelineFactory:
        module = importlib.import_module(self.module_name)
        pipeline_fn = getattr(module, self.attribute, None)
        if pipeline_fn is None:
            raise ModelError(f"{self.module_name} has no attribute {self.attribute!r}")
        return TransformersPipelineFactory(pipeline_fn)


class UltralyticsStrategy:
    """Fallback: local Ultralytics weights behind the same factory shape."""

    name = "ultralytics"

    def __init__(self, weights: str = "yolov8n.pt"):
        self.weights = weights

    def load(self) -> PipelineFactory:
        importlib.import_module("ultralytics")
        return YOLOPipelineFactory(self.weights)


def default_strategies(fallback_weights: str = "yolov8n.pt") -> list[LoadingStrategy]:
    return [TransformersStrategy(), UltralyticsStrategy(fallback_weights)]


def acquire_pipeline_factory(strategies: Sequence[LoadingStrategy]) -> PipelineFactory:
    failures: list[str] = []
    for strategy in strategies:
        try:
            factory = strategy.load()
        except Exception as e:
            logger.debug("Loading strategy %s failed: %s", strategy.name, e)
            failures.append(f"{strategy.name}: {e}")
            continue
        logger.info("Pipeline factory loaded via %s", strategy.name)
        return factory
    raise ModelError("Failed to load the detection library (" + "; ".join(failures) + ")")


def probe_model_endpoint(model_id: str, timeout_s: float = 5.0) -> bool:
    """HEAD the model's config on the hub; raises ``NetworkError`` when unreachable."""
    url = HUB_CONFIG_URL.format(model_id=model_id)
    try:
        resp = requests.head(url, timeout=timeout_s, allow_redirects=True)
    except requests.RequestException as e:
        raise NetworkError(f"Cannot reach {url}: {e}") from e
    logger.debug("Model endpoint probe: %s %s", resp.status_code, resp.ok)
    if not resp.ok:
        logger.debug("Model endpoint not directly accessible, continuing anyway")
    return resp.ok


class ModelLoader:
    def __init__(
        self,
        strategies: Sequence[LoadingStrategy],
        status: StatusSink,
        *,
        task: str = DEFAULT_TASK,
        model_id: str = DEFAULT_MODEL_ID,
        options: Optional[Mapping[str, Any]] = None,
        retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
        sleep: Sleep = asyncio.sleep,
        probe: Optional[Callable[[str], bool]] = None,
    ):
        self.strategies = list(strategies)
        self.status = status
        self.task = task
        self.model_id = model_id
        self.options = dict(options or {})
        self.retry_delay_s = retry_delay_s
        self._sleep = sleep
        self._probe = probe
        self._factory: PipelineFactory | None = None
        self.attempts = 0

    def _on_progress(self, progress: Mapping[str, Any]) -> None:
        logger.debug("Model loading progress: %s", dict(progress))
        if progress.get("status") == "progress":
            value = progress.get("value")
            if value is None:
                return
            self.status.set_status(f"Loading model: {progress_percent(float(value))}%")

    async def _wait_before_retry(self, cancel: asyncio.Event | None) -> None:
        if cancel is None:
            await self._sleep(self.retry_delay_s)
            return
        sleeper = asyncio.ensure_future(self._sleep(self.retry_delay_s))
        waiter = asyncio.ensure_future(cancel.wait())
        _, pending = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if cancel.is_set():
            raise ModelError("Model loading cancelled")

    async def load_factory(self) -> PipelineFactory:
        if self._factory is None:
            self._factory = await asyncio.to_thread(acquire_pipeline_factory, self.strategies)
        return self._factory

    async def load_detector(self, max_retries: int = 3, cancel: asyncio.Event | None = None) -> DetectorCallable:
        """Instantiate the detector, making at most ``max_retries`` attempts.

        Raises ``ModelError`` when the library cannot be loaded, when every
        attempt failed, or when ``cancel`` is set.
        """
        self.status.set_status("Loading object detection model...")
        logger.debug("Initializing detector, retries = %d", max_retries)
        if self._probe is not None:
            # The hub may still be reachable through the library's own mirrors.
            try:
                await asyncio.to_thread(self._probe, self.model_id)
            except NetworkError as e:
                logger.debug("Error testing model endpoint access: %s", e)

        factory = await self.load_factory()
        options = dict(self.options, progress_callback=self._on_progress)

        last_error: BaseException | None = None
        for attempt in range(max_retries):
            if cancel is not None and cancel.is_set():
                raise ModelError("Model loading cancelled")
            self.attempts += 1
            logger.debug("Model loading attempt %d/%d", attempt + 1, max_retries)
            try:
                detector = await factory(self.task, self.model_id, options)
            except Exception as e:
                last_error = e
                if attempt < max_retries - 1:
                    logger.warning("Model loading attempt %d failed, retrying: %s", attempt + 1, e)
                    self.status.set_status(f"Loading model failed, retrying ({attempt + 1}/{max_retries})...")
                    await self._wait_before_retry(cancel)
                continue
            logger.debug("Model loaded successfully")
            return detector

        logger.debug("All model loading attempts failed, last error: %s", last_error)
        raise ModelError(f"Failed to load {self.model_id} after {max_retries} attempts") from last_error
