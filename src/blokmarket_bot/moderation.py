from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

import discord

# Discord refuses to bulk delete messages older than two weeks.
BULK_DELETE_MAX_AGE = timedelta(days=14)
CLEAR_SCAN_LIMIT = 100


def select_messages_to_clear(messages: Iterable, amount: int, author_id: Optional[int] = None) -> List:
    """Pick up to ``amount`` of the newest messages, optionally only from ``author_id``."""
    if author_id is not None:
        messages = (m for m in messages if m.author.id == author_id)
    selected = []
    for message in messages:
        if len(selected) >= amount:
            break
        selected.append(message)
    return selected


def split_by_age(messages: Sequence, now: Optional[datetime] = None) -> Tuple[List, List]:
    now = now or datetime.now(timezone.utc)
    fresh = [m for m in messages if now - m.created_at < BULK_DELETE_MAX_AGE]
    stale = [m for m in messages if now - m.created_at >= BULK_DELETE_MAX_AGE]
    return fresh, stale


@dataclass(frozen=True)
class AnnouncementStyle:
    color: int
    emoji: str
    label: str


ANNOUNCEMENT_STYLES = {
    "general": AnnouncementStyle(0x5865F2, "📢", "General Announcement"),
    "event": AnnouncementStyle(0xFEE75C, "🎉", "Event Announcement"),
    "important": AnnouncementStyle(0xED4245, "⚠️", "Important Notice"),
    "update": AnnouncementStyle(0x57F287, "🔔", "Update Notice"),
    "giveaway": AnnouncementStyle(0xEB459E, "🎁", "Giveaway"),
    "alert": AnnouncementStyle(0xFF6B6B, "🚨", "Alert"),
}


def build_announcement_embed(
    *,
    title: str,
    message: str,
    style_key: str,
    author_name: str,
    author_avatar_url: Optional[str] = None,
    image_url: Optional[str] = None,
    thumbnail_url: Optional[str] = None,
    footer: Optional[str] = None,
) -> discord.Embed:
    style = ANNOUNCEMENT_STYLES.get(style_key, ANNOUNCEMENT_STYLES["general"])
    embed = discord.Embed(
        title=f"{style.emoji} {title}",
        description=message,
        color=style.color,
        timestamp=datetime.now(timezone.utc),
    )
    embed.set_footer(text=footer or f"{style.label} • Posted by {author_name}", icon_url=author_avatar_url)
    if image_url:
        embed.set_image(url=image_url)
    if thumbnail_url:
        embed.set_thumbnail(url=thumbnail_url)
    return embed


def build_announcement_view(guild_id: int) -> discord.ui.View:
    """Disabled acknowledgement button plus a link back to the server. Needs a running loop."""
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            label="✓ Acknowledged",
            style=discord.ButtonStyle.success,
            custom_id="announce_react",
            disabled=True,
        )
    )
    view.add_item(
        discord.ui.Button(
            label="View Server",
            style=discord.ButtonStyle.link,
            url=f"https://discord.com/channels/{guild_id}",
        )
    )
    return view
