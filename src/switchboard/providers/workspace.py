"""Per-session working directories under the configured work dir."""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from pathlib import Path

from switchboard.agent.models import ImageAttachment
from switchboard.config import DEFAULT_WORK_DIR

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"[^\w\s-]")
_SPACE_RE = re.compile(r"\s+")
_MAX_SLUG_LENGTH = 50


def expand_path(path: str) -> Path:
    return Path(path).expanduser()


def generate_session_slug(prompt: str, task_id: str) -> str:
    """Readable directory name built from the prompt, suffixed with the task id tail."""
    slug = _NON_WORD_RE.sub(" ", prompt.lower())
    slug = _SPACE_RE.sub("-", slug.strip()).strip("-")
    slug = slug[:_MAX_SLUG_LENGTH].rstrip("-")
    if len(slug) < 3:
        slug = "task"
    return f"{slug}-{task_id[-6:]}"


def get_session_work_dir(
    work_dir: str | None = None,
    prompt: str | None = None,
    task_id: str | None = None,
) -> Path:
    """Create and return ``<work_dir>/sessions/<name>``."""
    sessions_dir = expand_path(work_dir or DEFAULT_WORK_DIR) / "sessions"
    if prompt and task_id:
        folder = generate_session_slug(prompt, task_id)
    elif task_id:
        folder = task_id
    else:
        folder = f"session-{int(time.time() * 1000)}"

    target = sessions_dir / folder
    target.mkdir(parents=True, exist_ok=True)
    return target


def save_images(images: list[ImageAttachment], work_dir: Path) -> list[Path]:
    """Write base64 attachments into *work_dir*. Undecodable images are skipped with a warning."""
    saved: list[Path] = []
    if not images:
        return saved
    work_dir.mkdir(parents=True, exist_ok=True)
    stamp = int(time.time() * 1000)
    for index, image in enumerate(images):
        ext = image.mime_type.split("/")[-1] or "png"
        path = work_dir / f"image_{stamp}_{index}.{ext}"
        data = image.data.split(",", 1)[1] if "," in image.data else image.data
        try:
            path.write_bytes(base64.b64decode(data, validate=True))
        except (binascii.Error, ValueError, OSError) as e:
            logger.warning("Failed to save image %d: %s", index, e)
            continue
        saved.append(path)
    return saved


def image_instruction(paths: list[Path]) -> str:
    if not paths:
        return ""
    listing = "\n".join(f"{i}. {p}" for i, p in enumerate(paths, 1))
    return (
        "## Attached images: read these first\n"
        f"The user attached {len(paths)} image file(s):\n{listing}\n\n"
        "Use the Read tool to view each image before answering. Base your answer "
        "only on what the images actually show.\n\n---\nUser's request:\n"
    )
