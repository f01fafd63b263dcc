"""Plain-text rendering of songs and comment threads for the terminal.

Lyric sheet layout::

    Midnight Drive
    Synthwave, 110 BPM, female vocal

    [Verse 1]
    Neon on the windshield
    ...

    [Chorus]
    ...

    Sounds like:
      - Nightcall by Kavinsky (same pulsing bass)

Usage::

    from lyricflow.formatting import LyricSheetFormatter
    text = LyricSheetFormatter().render(song)
"""

from datetime import datetime

from .models import Comment, Song
from .threads import CommentNode, can_reply, walk

_INDENT = "    "


class LyricSheetFormatter:
    """Render a :class:`~lyricflow.models.Song` as a readable lyric sheet."""

    def render(self, song: Song) -> str:
        """Return the sheet for *song*, ending with a single newline."""
        parts: list[str] = [song.title]
        if song.style_description:
            parts.append(song.style_description)

        for section in song.sections:
            parts.append("")
            if section.label:
                parts.append(f"[{section.label}]")
            parts.extend(section.text.strip("\n").splitlines())

        if song.recommendations:
            parts.append("")
            parts.append("Sounds like:")
            for rec in song.recommendations:
                line = f"  - {rec.title} by {rec.artist}"
                if rec.reason:
                    line += f" ({rec.reason})"
                parts.append(line)

        extras = []
        if song.audio_url:
            extras.append(f"Audio: {song.audio_url}")
        if song.cover_art_url:
            extras.append(f"Cover: {song.cover_art_url}")
        if song.ratings:
            extras.append(f"Rating: {song.average_rating:.1f}/5 ({len(song.ratings)} votes)")
        if extras:
            parts.append("")
            parts.extend(extras)

        return "\n".join(parts) + "\n"


class ThreadFormatter:
    """Render a comment forest with one indent step per reply level."""

    def render(self, forest: list[CommentNode]) -> str:
        if not forest:
            return "No comments yet.\n"
        lines: list[str] = []
        for depth, node in walk(forest):
            lines.extend(_render_comment(node.comment, depth))
        return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _format_timestamp(value: str) -> str:
    if not value:
        return ""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%b %d, %Y %H:%M")


def _render_comment(comment: Comment, depth: int) -> list[str]:
    indent = _INDENT * depth
    header = f"{indent}{comment.username or 'Anonymous'}"
    stamp = _format_timestamp(comment.created_at)
    if stamp:
        header += f" · {stamp}"
    if comment.id:
        # only nodes that can still take a reply advertise their id
        header += f"  [reply: {comment.id}]" if can_reply(depth) else f"  [{comment.id}]"
    body = [f"{indent}  {line}" for line in comment.content.splitlines() or [""]]
    return [header, *body]
