# core/formatting.py
"""Text of every message the bot posts."""

from typing import Optional, Sequence

from core.events import NormalizedEvent
from core.timezone_util import format_time

NO_UPCOMING_EVENTS = "No upcoming events."
ONLINE_MESSAGE = "Bot is online and ready!"


def format_date(event: NormalizedEvent, format_str: Optional[str] = None) -> str:
    return format_time(event.start, format_str)


def format_upcoming(events: Sequence[NormalizedEvent], format_str: Optional[str] = None) -> str:
    if not events:
        return NO_UPCOMING_EVENTS

    lines = [f"Next {len(events)} upcoming event{'s' if len(events) != 1 else ''}:"]
    for event in events:
        lines.append(f"• **{event.summary}** — {format_date(event, format_str)}")
    return "\n".join(lines)


def format_day_reminder(event: NormalizedEvent, kind: str, format_str: Optional[str] = None) -> str:
    label = "Tomorrow" if kind == "tomorrow" else "Today"
    return f"📅 Reminder 📅\n{label} {format_date(event, format_str)} event: **{event.summary}**"


def format_alarm_reminder(event: NormalizedEvent, mention: str = "@everyone") -> str:
    message = f"⏰ Event reminder ⏰ - **{event.summary}** is about to start"
    if mention:
        message += f"\n{mention}"
    return message


def format_new_event(event: NormalizedEvent, format_str: Optional[str] = None) -> str:
    message = f"🆕 New event: **{event.summary}** — {format_date(event, format_str)}"
    if event.description:
        message += f"\n{event.description[:500]}"
    return message
