import itertools
import json
import re

import httpx
import pytest

from lyricflow.gateway import PersistenceGateway
from lyricflow.models import Comment, Song
from lyricflow.remote import RemoteApi
from lyricflow.storage import LocalStore

BASE_URL = "http://testserver/api"


class FakeBackend:
    """In-memory stand-in for the LyricFlow server, served through httpx.MockTransport."""

    def __init__(self):
        self.users: dict[str, dict] = {}
        self.songs: dict[str, Song] = {}
        self.requests: list[tuple[str, str]] = []
        self.auth_headers: list[str | None] = []
        self.database = "connected"
        self.fail_status: int | None = None
        self._ids = itertools.count(1)
        self.routes = [
            ("GET", r"/health", self.health),
            ("POST", r"/register", self.register),
            ("POST", r"/login", self.login),
            ("GET", r"/public/songs", self.public_songs),
            ("PUT", r"/songs/(?P<song_id>[^/]+)/share", self.share),
            ("POST", r"/songs/(?P<song_id>[^/]+)/comment", self.add_comment),
            ("DELETE", r"/songs/(?P<song_id>[^/]+)/comment/(?P<comment_id>[^/]+)", self.delete_comment),
            ("POST", r"/songs/(?P<song_id>[^/]+)/rate", self.rate),
            ("POST", r"/songs", self.save_song),
            ("PUT", r"/songs/(?P<song_id>[^/]+)", self.update_song),
            ("DELETE", r"/songs/(?P<song_id>[^/]+)", self.delete_song),
            ("GET", r"/songs/(?P<user_id>[^/]+)", self.user_songs),
            ("GET", r"/users/(?P<user_id>[^/]+)/profile", self.profile),
            ("GET", r"/users/(?P<user_id>[^/]+)/public-songs", self.user_public_songs),
            ("PUT", r"/users/(?P<user_id>[^/]+)", self.update_user),
            ("POST", r"/users/(?P<user_id>[^/]+)/upgrade", self.upgrade),
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        self.requests.append((request.method, path))
        self.auth_headers.append(request.headers.get("authorization"))
        if self.fail_status:
            return httpx.Response(self.fail_status, json={"message": "Backend exploded"})
        body = json.loads(request.content) if request.content else {}
        for method, pattern, view in self.routes:
            match = re.fullmatch(pattern, path)
            if method == request.method and match:
                return view(request, body, **match.groupdict())
        return httpx.Response(404, json={"message": "No route"})

    def _next_id(self) -> str:
        return f"{next(self._ids):024x}"

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"message": message})

    @staticmethod
    def _song(song: Song) -> dict:
        data = song.to_dict()
        data["_id"] = data.pop("id")
        return data

    @staticmethod
    def _user(record: dict) -> dict:
        return {k: v for k, v in record.items() if k != "password"}

    # --- views ---

    def health(self, request, body):
        return httpx.Response(200, json={"server": "online", "database": self.database})

    def register(self, request, body):
        if any(u["email"] == body["email"] for u in self.users.values()):
            return self._error(400, "User exists")
        record = {"id": self._next_id(), "username": body["username"], "email": body["email"],
                  "password": body["password"], "tier": "free"}
        self.users[record["id"]] = record
        return httpx.Response(201, json=self._user(record))

    def login(self, request, body):
        for record in self.users.values():
            if record["email"] == body["email"] and record["password"] == body["password"]:
                return httpx.Response(200, json={**self._user(record), "token": f"tok-{record['id']}"})
        return self._error(401, "Invalid credentials")

    def save_song(self, request, body):
        user = self.users.get(body.get("userId"))
        if user is None:
            return self._error(404, "User not found")
        song = Song.from_dict({**body, "_id": self._next_id(), "authorName": user["username"],
                               "createdAt": 1_700_000_000_000 + len(self.songs)})
        self.songs[song.id] = song
        return httpx.Response(201, json=self._song(song))

    def update_song(self, request, body, song_id):
        song = self.songs.get(song_id)
        if song is None:
            return httpx.Response(200, json=None)
        data = {**self._song(song), **body}
        self.songs[song_id] = Song.from_dict(data)
        return httpx.Response(200, json=self._song(self.songs[song_id]))

    def delete_song(self, request, body, song_id):
        if self.songs.pop(song_id, None) is None:
            return self._error(404, "Song not found")
        return httpx.Response(200, json={"message": "Deleted"})

    def user_songs(self, request, body, user_id):
        found = [s for s in self.songs.values() if s.user_id == user_id]
        found.sort(key=lambda s: s.created_at, reverse=True)
        return httpx.Response(200, json=[self._song(s) for s in found])

    def share(self, request, body, song_id):
        song = self.songs[song_id]
        song.is_public = body["isPublic"]
        return httpx.Response(200, json=self._song(song))

    def add_comment(self, request, body, song_id):
        song = self.songs.get(song_id)
        if song is None:
            return self._error(404, "Song not found")
        song.comments.append(Comment(
            id=f"c{next(self._ids)}", user_id=body["userId"], username=body["username"],
            content=body["content"], created_at="2024-05-01T12:00:00.000Z",
            parent_id=body.get("parentCommentId"), avatar_url=body.get("avatarUrl"),
        ))
        return httpx.Response(200, json=self._song(song))

    def delete_comment(self, request, body, song_id, comment_id):
        song = self.songs[song_id]
        target = next((c for c in song.comments if c.id == comment_id), None)
        if target is None:
            return self._error(404, "Comment not found")
        if target.user_id != body.get("userId"):
            return self._error(403, "You can only delete your own comments")
        song.comments.remove(target)
        return httpx.Response(200, json=self._song(song))

    def rate(self, request, body, song_id):
        song = self.songs.get(song_id)
        if song is None:
            return self._error(404, "Song not found")
        song.rate(body["userId"], body["score"])
        return httpx.Response(200, json=self._song(song))

    def public_songs(self, request, body):
        found = [s for s in self.songs.values() if s.is_public]
        if request.url.params.get("sort") == "top":
            found.sort(key=lambda s: (s.average_rating, s.created_at), reverse=True)
        else:
            found.sort(key=lambda s: s.created_at, reverse=True)
        return httpx.Response(200, json=[self._song(s) for s in found[:50]])

    def profile(self, request, body, user_id):
        record = self.users.get(user_id)
        if record is None:
            return self._error(404, "User not found")
        public = [s for s in self.songs.values() if s.user_id == user_id and s.is_public]
        comments = sum(1 for s in self.songs.values() for c in s.comments if c.user_id == user_id)
        return httpx.Response(200, json={
            "id": user_id, "username": record["username"], "createdAt": 1_700_000_000_000,
            "stats": {"publicSongs": len(public), "totalComments": comments},
        })

    def user_public_songs(self, request, body, user_id):
        public = [s for s in self.songs.values() if s.user_id == user_id and s.is_public]
        return httpx.Response(200, json=[self._song(s) for s in public])

    def update_user(self, request, body, user_id):
        record = self.users.get(user_id)
        if record is None:
            return self._error(404, "User not found")
        if record["password"] != body.get("currentPassword"):
            return self._error(401, "Incorrect current password")
        if body.get("newEmail"):
            record["email"] = body["newEmail"]
        if body.get("newPassword"):
            record["password"] = body["newPassword"]
        return httpx.Response(200, json=self._user(record))

    def upgrade(self, request, body, user_id):
        record = self.users[user_id]
        record["tier"] = body["tier"]
        return httpx.Response(200, json=self._user(record))


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


@pytest.fixture
def store(tmp_path) -> LocalStore:
    return LocalStore(tmp_path / "store")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def gateway(backend, store) -> PersistenceGateway:
    return PersistenceGateway(RemoteApi(BASE_URL, transport=backend.transport()), store)


@pytest.fixture
def offline_gateway(store) -> PersistenceGateway:
    return PersistenceGateway(RemoteApi(BASE_URL, transport=httpx.MockTransport(_refuse)), store)
