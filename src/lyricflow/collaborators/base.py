from abc import ABC, abstractmethod

from ..models import InspirationInput, Song, StandardInput


class LyricsGenerator(ABC):
    """Abstract base class for text-model backends that write songs."""

    @abstractmethod
    async def generate(self, request: StandardInput | InspirationInput) -> Song:
        """Return an unsaved Song with title, style, sections and recommendations."""


class AudioSynthesizer(ABC):
    """Abstract base class for music-generation services."""

    @abstractmethod
    async def synthesize(self, song: Song) -> str:
        """Render *song* to audio and return a playable URL.

        Implementations poll their service until the track is ready and
        raise on failure or timeout.
        """


class CoverArtGenerator(ABC):
    """Abstract base class for cover image services."""

    @abstractmethod
    async def cover_url(self, song: Song, mood: str) -> str:
        """Return an image URL for *song*'s cover."""
