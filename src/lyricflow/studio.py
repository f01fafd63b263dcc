import dataclasses
import logging

from .collaborators.base import AudioSynthesizer, CoverArtGenerator, LyricsGenerator
from .exceptions import AuthorizationError, ValidationError
from .gateway import PersistenceGateway
from .models import InspirationInput, Song, StandardInput

logger = logging.getLogger(__name__)


class Studio:
    """One songwriting session: generate lyrics, then save and decorate the result.

    Media attached to a song is persisted right away: through
    ``update_song`` when the song is already saved, through ``save_song``
    when a user is logged in but the song is not saved yet.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        lyrics: LyricsGenerator,
        audio: AudioSynthesizer | None = None,
        cover_art: CoverArtGenerator | None = None,
    ):
        self.gateway = gateway
        self.lyrics = lyrics
        self.audio = audio
        self.cover_art = cover_art
        self.song: Song | None = None

    def _require_song(self) -> Song:
        if self.song is None:
            raise ValidationError("No song data; generate a song first")
        return self.song

    async def generate(self, request: StandardInput | InspirationInput) -> Song:
        self.song = await self.lyrics.generate(request)
        logger.info("Generated %r", self.song.title)
        return self.song

    async def save(self) -> Song:
        song = self._require_song()
        if song.is_saved:
            return song
        user = self.gateway.get_current_user()
        if user is None:
            raise AuthorizationError("Please log in to save songs")
        self.song = await self.gateway.save_song(user.id, song)
        return self.song

    async def attach_audio(self) -> Song:
        song = self._require_song()
        if self.audio is None:
            raise ValidationError("No audio service configured")
        url = await self.audio.synthesize(song)
        return await self._persist_media(audio_url=url)

    async def attach_cover(self, mood: str) -> Song:
        song = self._require_song()
        if self.cover_art is None:
            raise ValidationError("No cover art service configured")
        url = await self.cover_art.cover_url(song, mood)
        return await self._persist_media(cover_art_url=url)

    async def _persist_media(self, **changes) -> Song:
        # keep the media on the in-memory song even if persisting fails
        self.song = dataclasses.replace(self.song, **changes)
        if self.song.is_saved:
            self.song = await self.gateway.update_song(self.song.id, changes)
        elif self.gateway.get_current_user() is not None:
            await self.save()
        return self.song
