import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path

import click

from .config import load_settings
from .exceptions import LyricFlowError, NotFoundError
from .formatting import LyricSheetFormatter, ThreadFormatter
from .gateway import FEED_SORTS, PersistenceGateway
from .models import HealthStatus, Song, Tier, User
from .storage import is_local_id
from .threads import build_comment_tree


def _build_gateway(ctx: click.Context) -> PersistenceGateway:
    return PersistenceGateway.from_settings(ctx.obj["settings"])


def _run(coro):
    """Run *coro*; report lyricflow errors the way every command does."""
    try:
        return asyncio.run(coro)
    except LyricFlowError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _current_user(gateway: PersistenceGateway) -> User:
    user = gateway.get_current_user()
    if user is None:
        click.echo("Error: not logged in (run `lyricflow login`)", err=True)
        sys.exit(1)
    return user


def _status_line(status: HealthStatus) -> str:
    server = "online" if status.online else "not detected"
    db = "linked" if status.db_connected else "waiting"
    return f"Server: {server} | Cloud DB: {db}"


def _song_line(song: Song) -> str:
    flags = []
    if is_local_id(song.id):
        flags.append("offline")
    if song.is_public:
        flags.append("public")
    if song.audio_url:
        flags.append("audio")
    suffix = f"  ({', '.join(flags)})" if flags else ""
    return f"{song.id}  {song.title} by {song.author_name}{suffix}"


async def _find_song(gateway: PersistenceGateway, song_id: str) -> Song:
    """Look a song up in the caller's library, then in the public feed."""
    user = gateway.get_current_user()
    if user is not None:
        for song in await gateway.get_user_songs(user.id):
            if song.id == song_id:
                return song
    if not is_local_id(song_id):
        for song in await gateway.get_public_songs("new"):
            if song.id == song_id:
                return song
    raise NotFoundError(f"Song not found: {song_id}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log requests and fallbacks.")
@click.option("--api-url", default=None, metavar="URL", help="Backend base URL.")
@click.option("--store-dir", default=None, metavar="PATH", help="Directory for offline data.")
@click.pass_context
def main(ctx: click.Context, verbose: bool, api_url: str | None, store_dir: str | None) -> None:
    """Save, share and discuss AI-written songs.

    Works offline: when the server cannot be reached, accounts and songs are
    kept in a local store and marked "offline".
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)

    settings = load_settings()
    if api_url:
        settings = dataclasses.replace(settings, api_url=api_url.rstrip("/"))
    if store_dir:
        settings = dataclasses.replace(settings, store_dir=Path(store_dir))
    ctx.obj = {"settings": settings}


# --- Status ---


@main.command()
@click.option("--watch", is_flag=True, default=False, help="Keep probing on an interval.")
@click.pass_context
def health(ctx: click.Context, watch: bool) -> None:
    """Check whether the server and its database are reachable."""
    gateway = _build_gateway(ctx)
    if not watch:
        click.echo(_status_line(_run(gateway.check_health())))
        return

    async def _watch():
        async for status in gateway.poll_health(ctx.obj["settings"].health_interval):
            click.echo(_status_line(status))

    try:
        _run(_watch())
    except KeyboardInterrupt:
        pass


# --- Accounts ---


@main.command()
@click.argument("email")
@click.argument("username")
@click.password_option()
@click.pass_context
def register(ctx: click.Context, email: str, username: str, password: str) -> None:
    """Create an account and log in."""
    user = _run(_build_gateway(ctx).register(email, username, password))
    click.echo(f"Welcome, {user.username} ({user.tier.value} plan)")


@main.command()
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True)
@click.pass_context
def login(ctx: click.Context, email: str, password: str) -> None:
    """Log in and remember the session."""
    user = _run(_build_gateway(ctx).login(email, password))
    click.echo(f"Logged in as {user.username}")


@main.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    _build_gateway(ctx).logout()
    click.echo("Logged out")


@main.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    user = _current_user(_build_gateway(ctx))
    click.echo(f"{user.username} <{user.email}>  id={user.id}  plan={user.tier.value}")


@main.command()
@click.option("--tier", type=click.Choice([t.value for t in Tier]), default=Tier.PRO.value,
              show_default=True)
@click.pass_context
def upgrade(ctx: click.Context, tier: str) -> None:
    """Change the current user's plan."""
    gateway = _build_gateway(ctx)
    user = _run(gateway.upgrade_tier(_current_user(gateway).id, tier))
    click.echo(f"{user.username} is now on the {user.tier.value} plan "
               f"({user.tier.audio_limit} song(s) with audio)")


@main.command()
@click.option("--email", "new_email", default=None, help="New email address.")
@click.option("--new-password", is_flag=True, default=False, help="Prompt for a new password.")
@click.option("--username", default=None)
@click.option("--avatar", "avatar_url", default=None, metavar="URL")
@click.pass_context
def account(ctx: click.Context, new_email: str | None, new_password: bool,
            username: str | None, avatar_url: str | None) -> None:
    """Edit the current user's account."""
    gateway = _build_gateway(ctx)
    user = _current_user(gateway)
    current_password = None
    password = None
    if new_email or new_password:
        current_password = click.prompt("Current password", hide_input=True)
    if new_password:
        password = click.prompt("New password", hide_input=True, confirmation_prompt=True)
    updated = _run(gateway.update_profile(
        user.id, current_password,
        new_email=new_email, new_password=password, username=username, avatar_url=avatar_url,
    ))
    click.echo(f"Updated {updated.username} <{updated.email}>")


# --- Library ---


@main.command()
@click.option("--user", "user_id", default=None, help="User id (default: you).")
@click.pass_context
def songs(ctx: click.Context, user_id: str | None) -> None:
    """List a user's saved songs, newest first."""
    gateway = _build_gateway(ctx)
    user_id = user_id or _current_user(gateway).id
    found = _run(gateway.get_user_songs(user_id))
    if not found:
        click.echo("No songs saved yet.")
    for song in found:
        click.echo(_song_line(song))


@main.command()
@click.argument("song_id")
@click.pass_context
def show(ctx: click.Context, song_id: str) -> None:
    """Print a song's lyric sheet."""
    song = _run(_find_song(_build_gateway(ctx), song_id))
    click.echo(LyricSheetFormatter().render(song), nl=False)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def save(ctx: click.Context, path: Path) -> None:
    """Save a song from a JSON file (title, styleDescription, structure, ...)."""
    gateway = _build_gateway(ctx)
    user = _current_user(gateway)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        click.echo(f"Error: {path} is not valid JSON ({exc})", err=True)
        sys.exit(1)
    saved = _run(gateway.save_song(user.id, Song.from_dict(data)))
    click.echo(f"Saved {_song_line(saved)}")


@main.command()
@click.argument("song_id")
@click.pass_context
def delete(ctx: click.Context, song_id: str) -> None:
    _run(_build_gateway(ctx).delete_song(song_id))
    click.echo(f"Deleted {song_id}")


# --- Community ---


@main.command()
@click.argument("song_id")
@click.option("--private", is_flag=True, default=False, help="Stop sharing instead.")
@click.pass_context
def share(ctx: click.Context, song_id: str, private: bool) -> None:
    """Publish a song to the community feed."""
    song = _run(_build_gateway(ctx).toggle_share(song_id, not private))
    click.echo(f"{song.title} is now {'public' if song.is_public else 'private'}")


@main.command()
@click.argument("song_id")
@click.argument("text")
@click.option("--reply-to", default=None, metavar="COMMENT_ID")
@click.pass_context
def comment(ctx: click.Context, song_id: str, text: str, reply_to: str | None) -> None:
    """Comment on a song, or reply to a comment."""
    song = _run(_build_gateway(ctx).add_comment(song_id, text, parent_id=reply_to))
    click.echo(ThreadFormatter().render(build_comment_tree(song.comments)), nl=False)


@main.command()
@click.argument("song_id")
@click.argument("comment_id")
@click.pass_context
def uncomment(ctx: click.Context, song_id: str, comment_id: str) -> None:
    """Delete one of your comments."""
    _run(_build_gateway(ctx).delete_comment(song_id, comment_id))
    click.echo(f"Deleted comment {comment_id}")


@main.command()
@click.argument("song_id")
@click.pass_context
def thread(ctx: click.Context, song_id: str) -> None:
    """Show the discussion under a song."""
    song = _run(_find_song(_build_gateway(ctx), song_id))
    click.echo(f"Discussion ({len(song.comments)})")
    click.echo(ThreadFormatter().render(build_comment_tree(song.comments)), nl=False)


@main.command()
@click.argument("song_id")
@click.argument("score", type=int)
@click.pass_context
def rate(ctx: click.Context, song_id: str, score: int) -> None:
    """Rate a song from 1 to 5."""
    song = _run(_build_gateway(ctx).rate_song(song_id, score))
    click.echo(f"{song.title}: {song.average_rating:.1f}/5 from {len(song.ratings)} rating(s)")


@main.command()
@click.option("--sort", type=click.Choice(FEED_SORTS), default="new", show_default=True)
@click.pass_context
def feed(ctx: click.Context, sort: str) -> None:
    """Browse public songs."""
    found = _run(_build_gateway(ctx).get_public_songs(sort))
    if not found:
        click.echo("Nothing shared yet.")
    for song in found:
        click.echo(f"{_song_line(song)}  ★ {song.average_rating:.1f}")


@main.command()
@click.argument("user_id")
@click.pass_context
def profile(ctx: click.Context, user_id: str) -> None:
    """Show a user's public profile and shared songs."""
    gateway = _build_gateway(ctx)

    async def _load():
        return await gateway.get_user_profile(user_id), await gateway.get_user_public_songs(user_id)

    info, shared = _run(_load())
    click.echo(f"{info.username}: {info.public_songs} public song(s), "
               f"{info.total_comments} comment(s)")
    for song in shared:
        click.echo(f"  {_song_line(song)}")
