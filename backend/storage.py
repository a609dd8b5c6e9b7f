from __future__ import annotations

import uuid
from pathlib import Path


def save_upload(uploads_dir: Path, filename: str, content: bytes) -> Path:
    uploads_dir.mkdir(parents=True, exist_ok=True)
    safe_name = f"{uuid.uuid4().hex}_{Path(filename).name}"
    out_path = uploads_dir / safe_name
    out_path.write_bytes(content)
    return out_path
