"""Dual-mode persistence gateway.

Every operation first makes a single request to the backend. If that fails
(no response, non-2xx status, unreadable body) the same logical effect is
applied to the :class:`~lyricflow.storage.LocalStore` instead, so callers
get one async contract whether or not the server is up.

Social operations (sharing, comments, ratings, the public feed and public
profiles) are online-only: there is no meaningful local version of
multi-user state, so their failures are raised instead.

Usage::

    gateway = PersistenceGateway.from_settings(load_settings())
    user = await gateway.login("nova@example.com", "hunter2")
    song = await gateway.save_song(user.id, song)
"""

import asyncio
import logging
import time
import uuid
from typing import AsyncIterator, Awaitable, Callable

import httpx

from .config import Settings
from .exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    OfflineError,
    RemoteError,
    ValidationError,
)
from .models import (
    HealthStatus,
    Song,
    Tier,
    User,
    UserProfile,
    song_changes_to_wire,
    validate_score,
)
from .remote import RemoteApi
from .storage import (
    AUTH_TOKEN_KEY,
    CURRENT_USER_KEY,
    LOCAL_ID_PREFIX,
    LOCAL_SONGS_KEY,
    LOCAL_USERS_KEY,
    LocalStore,
    is_local_id,
)

logger = logging.getLogger(__name__)

FEED_SORTS = ("new", "top")

_STATUS_ERRORS = {
    400: ValidationError,
    401: AuthorizationError,
    403: AuthorizationError,
    404: NotFoundError,
    409: ConflictError,
}


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def _now_millis() -> int:
    return int(time.time() * 1000)


def _translate(exc: RemoteError) -> Exception:
    """Map a failed online-only request to the error a caller should see."""
    if exc.is_transport_error:
        return OfflineError("Service unavailable: this action needs a connection to the server")
    error_cls = _STATUS_ERRORS.get(exc.status_code)
    if error_cls is None:
        return exc
    return error_cls(exc.message)


def _require(**fields: str) -> None:
    for name, value in fields.items():
        if not value or not str(value).strip():
            raise ValidationError(f"{name.replace('_', ' ').capitalize()} is required")


def _audio_limit_message(limit: int, tier: Tier) -> str:
    plural = "s" if limit > 1 else ""
    return f"Audio generation limit reached ({limit} song{plural} max for {tier.value} tier)."


def _newest_first(songs: list[Song]) -> list[Song]:
    return sorted(songs, key=lambda s: s.created_at, reverse=True)


def _decode(path: str, data, parse: Callable, *, many: bool = False):
    """Parse a successful reply body, or raise RemoteError if it has the wrong shape.

    An empty body, a list where an object was expected (or the reverse) and
    field values the models reject all count as a malformed reply.
    """
    if not isinstance(data, list if many else dict):
        raise RemoteError(path, 200, "Malformed response body")
    try:
        return [parse(item) for item in data] if many else parse(data)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise RemoteError(path, 200, "Malformed response body") from exc


class PersistenceGateway:
    """Remote-first access to users and songs with a local fallback."""

    def __init__(self, api: RemoteApi, store: LocalStore):
        self.api = api
        self.store = store

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "PersistenceGateway":
        api = RemoteApi(settings.api_url, timeout=settings.http_timeout, transport=transport)
        return cls(api, LocalStore(settings.store_dir))

    # ------------------------------------------------------------------
    # Call policies
    # ------------------------------------------------------------------

    async def _with_fallback(self, action: str, remote: Callable[[], Awaitable], fallback: Callable):
        try:
            return await remote()
        except RemoteError as exc:
            logger.warning("Backend unavailable for %s, using local store: %s", action, exc.message)
        return fallback()

    async def _online_only(self, remote: Callable[[], Awaitable]):
        try:
            return await remote()
        except RemoteError as exc:
            mapped = _translate(exc)
            if mapped is exc:
                raise
            raise mapped from exc

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def get_current_user(self) -> User | None:
        data = self.store.get_item(CURRENT_USER_KEY)
        return User.from_dict(data) if data else None

    def logout(self) -> None:
        self.store.remove_item(CURRENT_USER_KEY)
        self.store.remove_item(AUTH_TOKEN_KEY)

    def _set_session(self, user: User, token: str | None = None) -> None:
        self.store.set_item(CURRENT_USER_KEY, user.to_dict())
        if token:
            self.store.set_item(AUTH_TOKEN_KEY, token)
        else:
            self.store.remove_item(AUTH_TOKEN_KEY)

    def _refresh_session(self, user: User) -> None:
        """Overwrite the session slot if *user* is the one logged in, keeping the token."""
        current = self.get_current_user()
        if current and current.id == user.id:
            self.store.set_item(CURRENT_USER_KEY, user.to_dict())

    def _token(self) -> str | None:
        return self.store.get_item(AUTH_TOKEN_KEY)

    def _require_user(self) -> User:
        user = self.get_current_user()
        if user is None:
            raise AuthorizationError("Log in first")
        return user

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def check_health(self) -> HealthStatus:
        """Report server reachability and database connectivity. Never raises."""
        try:
            data = await self.api.request("GET", "/health")
        except RemoteError as exc:
            logger.debug("Health probe failed: %s", exc.message)
            return HealthStatus()
        if not isinstance(data, dict):
            return HealthStatus()
        return HealthStatus(
            online=data.get("server") == "online",
            db_connected=data.get("database") == "connected",
        )

    async def poll_health(self, interval: float) -> AsyncIterator[HealthStatus]:
        while True:
            yield await self.check_health()
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def register(self, email: str, username: str, password: str) -> User:
        _require(email=email, username=username, password=password)

        async def remote():
            data = await self.api.request(
                "POST", "/register",
                json={"email": email, "username": username, "password": password},
            )
            user = _decode("/register", data, User.from_dict)
            self._set_session(user, data.get("token"))
            return user

        def fallback():
            users = self.store.read_collection(LOCAL_USERS_KEY)
            if any(u.get("email") == email for u in users):
                raise ConflictError("User exists (offline mode)")
            record = {
                "id": new_local_id(),
                "username": username,
                "email": email,
                "password": password,
                "tier": Tier.FREE.value,
            }
            users.append(record)
            self.store.write_collection(LOCAL_USERS_KEY, users)
            user = User.from_dict(record)
            self._set_session(user)
            return user

        return await self._with_fallback("register", remote, fallback)

    async def login(self, email: str, password: str) -> User:
        _require(email=email, password=password)

        async def remote():
            data = await self.api.request(
                "POST", "/login", json={"email": email, "password": password}
            )
            user = _decode("/login", data, User.from_dict)
            self._set_session(user, data.get("token"))
            return user

        def fallback():
            users = self.store.read_collection(LOCAL_USERS_KEY)
            record = next(
                (u for u in users if u.get("email") == email and u.get("password") == password),
                None,
            )
            if record is None:
                raise AuthorizationError("Invalid credentials (offline mode)")
            user = User.from_dict(record)
            self._set_session(user)
            return user

        return await self._with_fallback("login", remote, fallback)

    async def update_profile(
        self,
        user_id: str,
        current_password: str | None = None,
        *,
        new_email: str | None = None,
        new_password: str | None = None,
        username: str | None = None,
        avatar_url: str | None = None,
    ) -> User:
        """Edit account fields. Changing email or password needs the current password."""
        changes_credentials = bool(new_email or new_password)
        if changes_credentials and not current_password:
            raise ValidationError("Current password is required to change email or password")
        if not (changes_credentials or username or avatar_url):
            raise ValidationError("Nothing to update")

        async def remote():
            body = {
                "currentPassword": current_password,
                "newEmail": new_email,
                "newPassword": new_password,
                "username": username,
                "avatarUrl": avatar_url,
            }
            path = f"/users/{user_id}"
            data = await self.api.request(
                "PUT", path,
                json={k: v for k, v in body.items() if v is not None},
                token=self._token(),
            )
            user = _decode(path, data, User.from_dict)
            self._refresh_session(user)
            return user

        def fallback():
            users = self.store.read_collection(LOCAL_USERS_KEY)
            record = next((u for u in users if u.get("id") == user_id), None)
            if record is None:
                raise NotFoundError("User not found")
            if changes_credentials and record.get("password") != current_password:
                raise AuthorizationError("Incorrect current password")
            if new_email:
                if any(u.get("email") == new_email and u.get("id") != user_id for u in users):
                    raise ConflictError("Email already exists")
                record["email"] = new_email
            if new_password:
                record["password"] = new_password
            if username:
                record["username"] = username
            if avatar_url:
                record["avatarUrl"] = avatar_url
            self.store.write_collection(LOCAL_USERS_KEY, users)
            user = User.from_dict(record)
            self._refresh_session(user)
            return user

        return await self._with_fallback("update_profile", remote, fallback)

    async def upgrade_tier(self, user_id: str, tier: Tier | str = Tier.PRO) -> User:
        try:
            tier = Tier(tier)
        except ValueError:
            raise ValidationError(f"Unknown tier: {tier}") from None

        async def remote():
            path = f"/users/{user_id}/upgrade"
            data = await self.api.request(
                "POST", path, json={"tier": tier.value}, token=self._token()
            )
            user = _decode(path, data, User.from_dict)
            self._refresh_session(user)
            return user

        def fallback():
            users = self.store.read_collection(LOCAL_USERS_KEY)
            record = next((u for u in users if u.get("id") == user_id), None)
            if record is not None:
                record["tier"] = tier.value
                self.store.write_collection(LOCAL_USERS_KEY, users)
                user = User.from_dict(record)
            else:
                # a server-registered user who is logged in while the server is down
                current = self.get_current_user()
                if current is None or current.id != user_id:
                    raise NotFoundError("User not found")
                current.tier = tier
                user = current
            self._refresh_session(user)
            return user

        return await self._with_fallback("upgrade_tier", remote, fallback)

    # ------------------------------------------------------------------
    # Songs
    # ------------------------------------------------------------------

    def _local_tier(self, user_id: str) -> Tier:
        for record in self.store.read_collection(LOCAL_USERS_KEY):
            if record.get("id") == user_id:
                return Tier(record.get("tier") or Tier.FREE.value)
        current = self.get_current_user()
        if current and current.id == user_id:
            return current.tier
        return Tier.FREE

    def _local_author_name(self, user_id: str) -> str | None:
        for record in self.store.read_collection(LOCAL_USERS_KEY):
            if record.get("id") == user_id:
                return record.get("username")
        current = self.get_current_user()
        if current and current.id == user_id:
            return current.username
        return None

    def _check_audio_quota(self, songs: list[dict], user_id: str) -> None:
        tier = self._local_tier(user_id)
        with_audio = sum(1 for s in songs if s.get("userId") == user_id and s.get("audioUrl"))
        if with_audio >= tier.audio_limit:
            raise ConflictError(_audio_limit_message(tier.audio_limit, tier))

    def _local_save(self, user_id: str, payload: dict) -> Song:
        songs = self.store.read_collection(LOCAL_SONGS_KEY)
        if payload.get("audioUrl"):
            self._check_audio_quota(songs, user_id)
        record = {
            **payload,
            "id": new_local_id(),
            "userId": user_id,
            "createdAt": _now_millis(),
            "authorName": self._local_author_name(user_id) or payload.get("authorName") or "Anonymous",
        }
        songs.append(record)
        self.store.write_collection(LOCAL_SONGS_KEY, songs)
        logger.debug("Saved song %s locally", record["id"])
        return Song.from_dict(record)

    def _local_update(self, song_id: str, wire: dict) -> Song:
        songs = self.store.read_collection(LOCAL_SONGS_KEY)
        for index, record in enumerate(songs):
            if song_id in (record.get("id"), record.get("_id")):
                if wire.get("audioUrl") and not record.get("audioUrl"):
                    self._check_audio_quota(songs, record.get("userId", ""))
                songs[index] = {**record, **wire}
                self.store.write_collection(LOCAL_SONGS_KEY, songs)
                return Song.from_dict(songs[index])
        raise NotFoundError("Song not found locally")

    def _local_delete(self, song_id: str) -> None:
        songs = self.store.read_collection(LOCAL_SONGS_KEY)
        remaining = [s for s in songs if song_id not in (s.get("id"), s.get("_id"))]
        if len(remaining) == len(songs):
            raise NotFoundError("Song not found locally")
        self.store.write_collection(LOCAL_SONGS_KEY, remaining)

    async def save_song(self, user_id: str, song: Song) -> Song:
        """Persist a newly generated song for *user_id* and return the stored copy."""
        _require(user_id=user_id, title=song.title)
        payload = song.to_dict()
        payload.pop("id", None)
        payload.pop("createdAt", None)
        payload["userId"] = user_id

        async def remote():
            data = await self.api.request("POST", "/songs", json=payload, token=self._token())
            return _decode("/songs", data, Song.from_dict)

        return await self._with_fallback(
            "save_song", remote, lambda: self._local_save(user_id, payload)
        )

    async def update_song(self, song_id: str, changes: dict) -> Song:
        """Apply ``{attribute: value}`` *changes* to a saved song."""
        wire = song_changes_to_wire(changes)
        if is_local_id(song_id):
            return self._local_update(song_id, wire)

        async def remote():
            path = f"/songs/{song_id}"
            data = await self.api.request("PUT", path, json=wire, token=self._token())
            if data is None:
                raise NotFoundError("Song not found")
            return _decode(path, data, Song.from_dict)

        return await self._with_fallback(
            "update_song", remote, lambda: self._local_update(song_id, wire)
        )

    async def delete_song(self, song_id: str) -> None:
        if is_local_id(song_id):
            self._local_delete(song_id)
            return

        async def remote():
            await self.api.request("DELETE", f"/songs/{song_id}", token=self._token())

        await self._with_fallback("delete_song", remote, lambda: self._local_delete(song_id))

    async def get_user_songs(self, user_id: str) -> list[Song]:
        async def remote():
            path = f"/songs/{user_id}"
            data = await self.api.request("GET", path, token=self._token())
            return _decode(path, data, Song.from_dict, many=True)

        def fallback():
            songs = self.store.read_collection(LOCAL_SONGS_KEY)
            return _newest_first([Song.from_dict(s) for s in songs if s.get("userId") == user_id])

        return await self._with_fallback("get_user_songs", remote, fallback)

    # ------------------------------------------------------------------
    # Social (online-only)
    # ------------------------------------------------------------------

    @staticmethod
    def _require_remote_song(song_id: str) -> None:
        if is_local_id(song_id):
            raise OfflineError("This song is only saved on this device; save it online first")

    async def toggle_share(self, song_id: str, is_public: bool) -> Song:
        self._require_remote_song(song_id)

        async def remote():
            data = await self.api.request(
                "PUT", f"/songs/{song_id}/share",
                json={"isPublic": bool(is_public)}, token=self._token(),
            )
            return _decode(f"/songs/{song_id}/share", data, Song.from_dict)

        return await self._online_only(remote)

    async def add_comment(self, song_id: str, content: str, parent_id: str | None = None) -> Song:
        _require(comment=content)
        self._require_remote_song(song_id)
        user = self._require_user()

        async def remote():
            body = {
                "userId": user.id,
                "username": user.username,
                "content": content.strip(),
                "avatarUrl": user.avatar_url,
            }
            if parent_id:
                body["parentCommentId"] = parent_id
            data = await self.api.request(
                "POST", f"/songs/{song_id}/comment", json=body, token=self._token()
            )
            return _decode(f"/songs/{song_id}/comment", data, Song.from_dict)

        return await self._online_only(remote)

    async def delete_comment(self, song_id: str, comment_id: str) -> Song:
        """Delete one of the current user's comments; the server checks authorship."""
        self._require_remote_song(song_id)
        user = self._require_user()

        async def remote():
            data = await self.api.request(
                "DELETE", f"/songs/{song_id}/comment/{comment_id}",
                json={"userId": user.id}, token=self._token(),
            )
            return _decode(f"/songs/{song_id}/comment/{comment_id}", data, Song.from_dict)

        return await self._online_only(remote)

    async def rate_song(self, song_id: str, score: int) -> Song:
        validate_score(score)
        self._require_remote_song(song_id)
        user = self._require_user()

        async def remote():
            data = await self.api.request(
                "POST", f"/songs/{song_id}/rate",
                json={"userId": user.id, "score": score}, token=self._token(),
            )
            return _decode(f"/songs/{song_id}/rate", data, Song.from_dict)

        return await self._online_only(remote)

    async def get_public_songs(self, sort: str = "new") -> list[Song]:
        """Community feed, newest first or (``top``) by average rating."""
        if sort not in FEED_SORTS:
            raise ValidationError(f"Sort must be one of: {', '.join(FEED_SORTS)}")

        async def remote():
            data = await self.api.request("GET", "/public/songs", params={"sort": sort})
            return _decode("/public/songs", data, Song.from_dict, many=True)

        return await self._online_only(remote)

    async def get_user_profile(self, user_id: str) -> UserProfile:
        async def remote():
            path = f"/users/{user_id}/profile"
            data = await self.api.request("GET", path)
            return _decode(path, data, UserProfile.from_dict)

        return await self._online_only(remote)

    async def get_user_public_songs(self, user_id: str) -> list[Song]:
        async def remote():
            path = f"/users/{user_id}/public-songs"
            data = await self.api.request("GET", path)
            return _decode(path, data, Song.from_dict, many=True)

        return await self._online_only(remote)
