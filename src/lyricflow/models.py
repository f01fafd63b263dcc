from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .exceptions import ValidationError

MIN_SCORE = 1
MAX_SCORE = 5


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"

    @property
    def audio_limit(self) -> int:
        """How many songs with audio a user on this tier may keep."""
        return 10 if self is Tier.PRO else 1


class SongMood(str, Enum):
    HAPPY = "Happy"
    SAD = "Sad"
    ANGRY = "Angry"
    CHILL = "Chill"
    ROMANTIC = "Romantic"
    MOTIVATIONAL = "Motivational"
    MELANCHOLIC = "Melancholic"
    PARTY = "Party"


class SongGenre(str, Enum):
    POP = "Pop"
    ROCK = "Rock"
    HIP_HOP = "Hip-Hop"
    COUNTRY = "Country"
    RNB = "R&B"
    EDM = "EDM"
    JAZZ = "Jazz"
    FOLK = "Folk"
    METAL = "Metal"


def _record_id(data: dict) -> str | None:
    # the document store emits "_id", locally created records use "id"
    value = data.get("id") or data.get("_id")
    return str(value) if value is not None else None


def _epoch_millis(value) -> int:
    """Normalise a created-at value (epoch millis or ISO-8601) to epoch millis."""
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return int(parsed.timestamp() * 1000)


@dataclass
class User:
    """An account, as returned by login/registration and kept in the session slot."""

    id: str
    username: str
    email: str
    tier: Tier = Tier.FREE
    avatar_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        return cls(
            id=_record_id(data) or "",
            username=data.get("username", ""),
            email=data.get("email", ""),
            tier=Tier(data.get("tier") or Tier.FREE.value),
            avatar_url=data.get("avatarUrl"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "tier": self.tier.value,
            "avatarUrl": self.avatar_url,
        }


@dataclass
class LyricSection:
    """A labelled block of lyrics, e.g. "Verse 1" or "Chorus"."""

    label: str
    text: str

    @classmethod
    def from_dict(cls, data: dict) -> "LyricSection":
        return cls(label=data.get("type", ""), text=data.get("content", ""))

    def to_dict(self) -> dict:
        return {"type": self.label, "content": self.text}


@dataclass
class SongRecommendation:
    title: str
    artist: str
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "SongRecommendation":
        return cls(
            title=data.get("title", ""),
            artist=data.get("artist", ""),
            reason=data.get("reason", ""),
        )

    def to_dict(self) -> dict:
        return {"title": self.title, "artist": self.artist, "reason": self.reason}


@dataclass
class Comment:
    """A comment on a song.

    ``parent_id`` is a back-reference to the comment being replied to. It may
    point at a comment that no longer exists; see :mod:`lyricflow.threads`.
    """

    user_id: str
    username: str
    content: str
    created_at: str = ""  # ISO-8601
    id: str | None = None
    parent_id: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Comment":
        return cls(
            id=_record_id(data),
            user_id=data.get("userId", ""),
            username=data.get("username", ""),
            content=data.get("content", ""),
            created_at=data.get("createdAt") or "",
            parent_id=data.get("parentCommentId"),
            avatar_url=data.get("avatarUrl"),
        )

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "userId": self.user_id,
            "username": self.username,
            "content": self.content,
            "createdAt": self.created_at,
            "parentCommentId": self.parent_id,
            "avatarUrl": self.avatar_url,
        }


@dataclass
class Rating:
    user_id: str
    score: int

    @classmethod
    def from_dict(cls, data: dict) -> "Rating":
        return cls(user_id=data.get("userId", ""), score=int(data.get("score", 0)))

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "score": self.score}


# Song attribute -> wire key, for partial updates.
SONG_WIRE_KEYS = {
    "user_id": "userId",
    "title": "title",
    "style_description": "styleDescription",
    "sections": "structure",
    "recommendations": "recommendations",
    "audio_url": "audioUrl",
    "cover_art_url": "coverArtUrl",
    "is_public": "isPublic",
    "author_name": "authorName",
    "average_rating": "averageRating",
    "ratings": "ratings",
    "comments": "comments",
}


@dataclass
class Song:
    """A generated song, saved or not.

    An unsaved song has an empty ``id``. Saved songs created while the
    backend was unreachable carry a ``local_``-prefixed id.
    """

    title: str
    style_description: str = ""
    sections: list[LyricSection] = field(default_factory=list)
    recommendations: list[SongRecommendation] = field(default_factory=list)
    audio_url: str | None = None
    cover_art_url: str | None = None
    is_public: bool = False
    author_name: str = "Anonymous"
    average_rating: float = 0.0
    ratings: list[Rating] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    id: str = ""
    user_id: str = ""
    created_at: int = 0  # epoch milliseconds

    @property
    def is_saved(self) -> bool:
        return bool(self.id)

    def rate(self, user_id: str, score: int) -> None:
        """Record *user_id*'s score, replacing any earlier one, and refresh the average."""
        validate_score(score)
        for rating in self.ratings:
            if rating.user_id == user_id:
                rating.score = score
                break
        else:
            self.ratings.append(Rating(user_id=user_id, score=score))
        self.average_rating = sum(r.score for r in self.ratings) / len(self.ratings)

    @classmethod
    def from_dict(cls, data: dict) -> "Song":
        return cls(
            id=_record_id(data) or "",
            user_id=data.get("userId", ""),
            created_at=_epoch_millis(data.get("createdAt")),
            title=data.get("title", ""),
            style_description=data.get("styleDescription", ""),
            sections=[LyricSection.from_dict(s) for s in data.get("structure") or []],
            recommendations=[
                SongRecommendation.from_dict(r) for r in data.get("recommendations") or []
            ],
            audio_url=data.get("audioUrl"),
            cover_art_url=data.get("coverArtUrl"),
            is_public=bool(data.get("isPublic", False)),
            author_name=data.get("authorName") or "Anonymous",
            average_rating=float(data.get("averageRating") or 0),
            ratings=[Rating.from_dict(r) for r in data.get("ratings") or []],
            comments=[Comment.from_dict(c) for c in data.get("comments") or []],
        )

    def to_dict(self) -> dict:
        data = {
            "title": self.title,
            "styleDescription": self.style_description,
            "structure": [s.to_dict() for s in self.sections],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "audioUrl": self.audio_url,
            "coverArtUrl": self.cover_art_url,
            "isPublic": self.is_public,
            "authorName": self.author_name,
            "averageRating": self.average_rating,
            "ratings": [r.to_dict() for r in self.ratings],
            "comments": [c.to_dict() for c in self.comments],
        }
        if self.id:
            data["id"] = self.id
        if self.user_id:
            data["userId"] = self.user_id
        if self.created_at:
            data["createdAt"] = self.created_at
        return data


def song_changes_to_wire(changes: dict) -> dict:
    """Translate ``{attribute: value}`` song changes to wire keys and values."""
    wire = {}
    for name, value in changes.items():
        if name not in SONG_WIRE_KEYS:
            raise ValidationError(f"Unknown song field: {name}")
        if isinstance(value, list):
            value = [item.to_dict() if hasattr(item, "to_dict") else item for item in value]
        wire[SONG_WIRE_KEYS[name]] = value
    return wire


def validate_score(score) -> None:
    if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(f"Rating must be a whole number from {MIN_SCORE} to {MAX_SCORE}")


@dataclass
class UserProfile:
    """Public view of another user."""

    id: str
    username: str
    avatar_url: str | None = None
    created_at: int = 0
    public_songs: int = 0
    total_comments: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        stats = data.get("stats") or {}
        return cls(
            id=_record_id(data) or "",
            username=data.get("username", ""),
            avatar_url=data.get("avatarUrl"),
            created_at=_epoch_millis(data.get("createdAt")),
            public_songs=int(stats.get("publicSongs", 0)),
            total_comments=int(stats.get("totalComments", 0)),
        )


@dataclass(frozen=True)
class HealthStatus:
    online: bool = False
    db_connected: bool = False


@dataclass
class StandardInput:
    """Song request by topic, mood and genre."""

    topic: str
    mood: SongMood
    genre: SongGenre
    additional_info: str = ""

    def details(self) -> str:
        return (
            f"Topic: {self.topic}\nMood: {self.mood.value}\nGenre: {self.genre.value}\n"
            f"Details: {self.additional_info or 'None'}"
        )


@dataclass
class InspirationInput:
    """Song request modelled on three reference tracks."""

    songs: list[str]
    additional_info: str = ""

    def __post_init__(self):
        if len(self.songs) != 3 or not all(s.strip() for s in self.songs):
            raise ValidationError("Provide exactly three reference songs")

    def details(self) -> str:
        return (
            f"Style Reference Songs: {', '.join(self.songs)}\n"
            f"Details: {self.additional_info or 'None'}"
        )
