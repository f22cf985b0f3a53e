"""Saving received files into the download directory."""

import asyncio
import logging
import os

from transfer.models import ReceivedFile

logger = logging.getLogger(__name__)

FALLBACK_NAME = "downloaded_file"


def safe_file_name(name: str) -> str:
    """Strip any directory part a peer may have put in the name."""
    name = os.path.basename(name.replace("\\", "/")).strip()
    if name in ("", ".", ".."):
        return FALLBACK_NAME
    return name


def unique_path(save_dir: str, name: str) -> str:
    """``save_dir/name``, or ``name (n).ext`` if that already exists."""
    path = os.path.join(save_dir, name)
    stem, ext = os.path.splitext(name)
    n = 1
    while os.path.exists(path):
        path = os.path.join(save_dir, f"{stem} ({n}){ext}")
        n += 1
    return path


def _write(save_dir: str, received: ReceivedFile) -> str:
    os.makedirs(save_dir, exist_ok=True)
    path = unique_path(save_dir, safe_file_name(received.name))
    # "xb" so a file that appeared since unique_path() is never clobbered
    with open(path, "xb") as f:
        f.write(received.data)
    return path


async def save_received_file(save_dir: str, received: ReceivedFile) -> str:
    """Write ``received`` into ``save_dir``; return the final path."""
    path = await asyncio.to_thread(_write, save_dir, received)
    logger.info(f"Saved {len(received.data)} bytes to {path}")
    return path
