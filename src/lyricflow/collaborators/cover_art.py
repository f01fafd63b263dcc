"""Cover art via the Pollinations image endpoint.

No API key is needed: the prompt is URL-encoded into the path and the
service renders on first fetch. A random seed keeps regenerated covers for
the same prompt from coming back identical.
"""

import random
from urllib.parse import quote

from ..models import Song
from .base import CoverArtGenerator

POLLINATIONS_URL = "https://image.pollinations.ai/prompt/"


def build_cover_prompt(title: str, mood: str, style: str, description: str | None = None) -> str:
    pieces = [
        f"{title} album cover art",
        f"{mood} mood",
        f"{style} style",
        description or "",
        "high quality",
        "4k",
        "highly detailed",
        "no text",
        "centered",
    ]
    return ", ".join(p for p in pieces if p)


class PollinationsCoverArt(CoverArtGenerator):
    def __init__(self, size: int = 1024, model: str = "flux"):
        self.size = size
        self.model = model

    async def cover_url(self, song: Song, mood: str) -> str:
        prompt = build_cover_prompt(song.title, mood, song.style_description)
        seed = random.randint(0, 99999)
        return (
            f"{POLLINATIONS_URL}{quote(prompt, safe='')}"
            f"?width={self.size}&height={self.size}&model={self.model}&nologo=true&seed={seed}"
        )
