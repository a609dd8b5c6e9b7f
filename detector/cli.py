from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path

from .controller import DetectionController
from .errors import FileError, ProcessingError
from .loader import DEFAULT_MODEL_ID, ModelLoader, default_strategies, probe_model_endpoint
from .surfaces import StatusBoard
from .types import DetectionParameters
from .visualize import OpenCVSurface, save_image_bgr
from .yolo_detector import load_image_bgr


async def _run(args: argparse.Namespace) -> int:
    image_path = Path(args.image)
    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    status = StatusBoard()
    img = load_image_bgr(image_path)
    surface = OpenCVSurface(img)
    loader = ModelLoader(
        default_strategies(args.fallback_weights),
        status,
        model_id=args.model,
        options={"quantized": False, "revision": "main", "local_files_only": False},
        probe=probe_model_endpoint,
    )
    controller = DetectionController(loader, status, surface, detection_timeout_s=args.timeout)

    if not await controller.initialize(args.retries):
        print(status.message)
        return 1

    params = DetectionParameters(threshold=args.threshold, max_objects=args.max_objects)
    try:
        dets = await controller.run_detection(image_path, params)
    except ProcessingError:
        print(status.message)
        return 1
    dets = dets or []

    # Save JSON
    json_path = outdir / f"{image_path.stem}_detections.json"
    json_path.write_text(json.dumps([asdict(d) for d in dets], indent=2), encoding="utf-8")

    # Save preview
    preview_path = outdir / f"{image_path.stem}_preview.jpg"
    save_image_bgr(preview_path, surface.render())

    print(f"Saved: {json_path}")
    print(f"Saved: {preview_path}")
    print(status.message)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Object Detection Demo - CLI")
    parser.add_argument("--image", required=True, help="Path to an input image")
    parser.add_argument("--model", default=DEFAULT_MODEL_ID, help="Model id passed to the pipeline factory")
    parser.add_argument("--fallback-weights", default="yolov8n.pt", help="Ultralytics weights used when transformers is unavailable")
    parser.add_argument("--threshold", type=float, default=0.9, help="Detection threshold")
    parser.add_argument("--max-objects", type=int, default=10, help="Maximum number of boxes to draw")
    parser.add_argument("--retries", type=int, default=3, help="Model loading attempts")
    parser.add_argument("--timeout", type=float, default=30.0, help="Detection timeout in seconds")
    parser.add_argument("--outdir", default="results", help="Output directory")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except FileError as e:
        print(f"Error processing your file: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
