"""Tests for pipeline factory acquisition and model instantiation retries."""

from __future__ import annotations

import asyncio
import logging

import pytest
import requests

from detector.errors import ModelError, NetworkError
from detector.loader import ModelLoader, acquire_pipeline_factory, probe_model_endpoint
from detector.surfaces import StatusBoard


class _Strategy:
    def __init__(self, name: str, factory=None, error: Exception | None = None) -> None:
        self.name = name
        self._factory = factory
        self._error = error
        self.calls = 0

    def load(self):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._factory


class _FlakyFactory:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls: list[tuple[str, str, dict]] = []

    async def __call__(self, task: str, model_id: str, options: dict):
        self.calls.append((task, model_id, options))
        if len(self.calls) <= self.failures:
            raise RuntimeError(f"boom {len(self.calls)}")
        progress = options["progress_callback"]
        progress({"status": "initiate", "name": model_id})
        progress({"status": "progress", "value": 0.5})
        progress({"status": "progress", "value": 1.0})
        return "detector"


class _SleepRecorder:
    def __init__(self, status: StatusBoard) -> None:
        self.status = status
        self.delays: list[float] = []
        self.status_at_sleep: list[str] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.status_at_sleep.append(self.status.message)


def _make_loader(factory, retry_delay_s: float = 2.0):
    status = StatusBoard()
    sleep = _SleepRecorder(status)
    loader = ModelLoader(
        [_Strategy("primary", factory=factory)],
        status,
        retry_delay_s=retry_delay_s,
        sleep=sleep,
    )
    return loader, status, sleep


def test_first_successful_strategy_wins() -> None:
    failing = _Strategy("module", error=ImportError("no module"))
    fallback = _Strategy("script", factory="factory")
    unused = _Strategy("other", factory="other")

    assert acquire_pipeline_factory([failing, fallback, unused]) == "factory"
    assert failing.calls == 1
    assert unused.calls == 0


def test_all_strategies_failing_is_model_error() -> None:
    with pytest.raises(ModelError, match="module: no module"):
        acquire_pipeline_factory([_Strategy("module", error=ImportError("no module"))])


def test_retries_then_succeeds_on_last_attempt() -> None:
    factory = _FlakyFactory(failures=2)
    loader, status, sleep = _make_loader(factory)

    detector = asyncio.run(loader.load_detector(3))

    assert detector == "detector"
    assert len(factory.calls) == 3
    retrying = [m for m in status.history if m.startswith("Loading model failed")]
    assert retrying == [
        "Loading model failed, retrying (1/3)...",
        "Loading model failed, retrying (2/3)...",
    ]
    assert sleep.delays == [2.0, 2.0]
    assert sleep.status_at_sleep == retrying


def test_exhausted_retries_make_exactly_max_attempts() -> None:
    factory = _FlakyFactory(failures=10)
    loader, status, sleep = _make_loader(factory)

    with pytest.raises(ModelError):
        asyncio.run(loader.load_detector(3))

    assert len(factory.calls) == 3
    assert loader.attempts == 3
    # No wait after the final failure.
    assert sleep.delays == [2.0, 2.0]


def test_default_retry_delay_is_two_seconds() -> None:
    loader = ModelLoader([_Strategy("primary", factory=_FlakyFactory(failures=0))], StatusBoard())

    assert loader.retry_delay_s == 2.0


def test_retried_attempts_log_warnings_not_errors(caplog) -> None:
    # The app disables propagation on the package loggers, so listen directly.
    loader_logger = logging.getLogger("detector.loader")
    loader_logger.addHandler(caplog.handler)
    try:
        loader, _, _ = _make_loader(_FlakyFactory(failures=10))
        with pytest.raises(ModelError):
            asyncio.run(loader.load_detector(3))
    finally:
        loader_logger.removeHandler(caplog.handler)

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert [r.getMessage() for r in warnings] == [
        "Model loading attempt 1 failed, retrying: boom 1",
        "Model loading attempt 2 failed, retrying: boom 2",
    ]
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_factory_called_with_task_model_and_progress_callback() -> None:
    factory = _FlakyFactory(failures=0)
    loader, status, _ = _make_loader(factory)
    loader.options = {"revision": "main"}

    asyncio.run(loader.load_detector())

    task, model_id, options = factory.calls[0]
    assert task == "object-detection"
    assert model_id == "Xenova/yolos-tiny"
    assert options["revision"] == "main"
    assert callable(options["progress_callback"])
    assert "Loading model: 50%" in status.history
    assert "Loading model: 100%" in status.history


def test_progress_without_value_is_ignored() -> None:
    loader, status, _ = _make_loader(_FlakyFactory(failures=0))

    loader._on_progress({"status": "progress"})
    loader._on_progress({"status": "download", "value": 0.3})

    assert status.history == []


def test_factory_is_acquired_once() -> None:
    strategy = _Strategy("primary", factory=_FlakyFactory(failures=0))
    status = StatusBoard()
    loader = ModelLoader([strategy], status, sleep=_SleepRecorder(status))

    asyncio.run(loader.load_detector(1))
    asyncio.run(loader.load_detector(1))

    assert strategy.calls == 1


def test_cancel_during_retry_wait_stops_loading() -> None:
    factory = _FlakyFactory(failures=10)
    status = StatusBoard()

    async def scenario() -> None:
        cancel = asyncio.Event()

        async def slow_sleep(delay: float) -> None:
            cancel.set()
            await asyncio.sleep(3600)

        loader = ModelLoader([_Strategy("primary", factory=factory)], status, sleep=slow_sleep)
        await loader.load_detector(3, cancel=cancel)

    with pytest.raises(ModelError, match="cancelled"):
        asyncio.run(scenario())
    assert len(factory.calls) == 1


def test_probe_failure_does_not_abort_loading() -> None:
    factory = _FlakyFactory(failures=0)
    status = StatusBoard()
    probed: list[str] = []

    def probe(model_id: str) -> bool:
        probed.append(model_id)
        raise NetworkError("offline")

    loader = ModelLoader([_Strategy("primary", factory=factory)], status, probe=probe)

    assert asyncio.run(loader.load_detector(1)) == "detector"
    assert probed == ["Xenova/yolos-tiny"]


def test_probe_model_endpoint_wraps_request_errors(monkeypatch) -> None:
    def fake_head(url, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr("detector.loader.requests.head", fake_head)

    with pytest.raises(NetworkError, match="huggingface.co/Xenova/yolos-tiny"):
        probe_model_endpoint("Xenova/yolos-tiny")
