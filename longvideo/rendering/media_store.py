"""
Local media store.

Files written here (merged videos, synthesized narration) are served by the
API under /media and addressed by a public URL.
"""
import os
import uuid
import logging
from pathlib import Path
from typing import Union

import aiofiles

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalMediaStore:
    """Writes media under media_dir and returns {public_base_url}/media/<name> URLs."""

    def __init__(self, media_dir: Union[str, Path], public_base_url: str):
        self.media_dir = Path(media_dir)
        self.media_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def url_for(self, name: str) -> str:
        return f"{self.public_base_url}/media/{name}"

    def path_for(self, name: str) -> Path:
        return self.media_dir / name

    @staticmethod
    def _new_name(prefix: str, suffix: str) -> str:
        suffix = suffix if suffix.startswith(".") else f".{suffix}"
        return f"{prefix}_{uuid.uuid4().hex[:12]}{suffix}"

    async def save_bytes(self, data: bytes, suffix: str, prefix: str = "media") -> str:
        name = self._new_name(prefix, suffix)
        async with aiofiles.open(self.path_for(name), "wb") as f:
            await f.write(data)
        logger.info(f"Stored {name} ({len(data)} bytes)")
        return self.url_for(name)

    async def save_file(self, source: Union[str, Path], prefix: str = "media") -> str:
        source = Path(source)
        name = self._new_name(prefix, source.suffix or ".bin")
        async with aiofiles.open(source, "rb") as src, aiofiles.open(self.path_for(name), "wb") as dst:
            while True:
                chunk = await src.read(CHUNK_SIZE)
                if not chunk:
                    break
                await dst.write(chunk)
        logger.info(f"Stored {name} ({os.path.getsize(self.path_for(name))} bytes)")
        return self.url_for(name)
