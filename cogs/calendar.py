# cogs/calendar.py

import asyncio
from datetime import time, timedelta
from typing import List
from zoneinfo import ZoneInfo

import discord
from discord import app_commands
from discord.ext import commands, tasks

from core.config import config
from core.errors import CalendarParseError, SourceFetchError
from core.event_store import EventStore
from core.events import NormalizedEvent
from core.formatting import ONLINE_MESSAGE, format_upcoming
from core.normalizer import EventNormalizer
from core.notify import ChannelSink
from core.reminders import EVENING_REMINDER, MORNING_REMINDER, ReminderScheduler, daily_slot
from core.timezone_util import get_current_time, get_timezone
from core.webdav import WebDAVCalendarSource


def daily_reminder_times() -> List[time]:
    """Wall-clock times of the fixed daily reminders in the configured zone"""
    tz = ZoneInfo(config.timezone)
    return [reminder.replace(tzinfo=tz) for reminder in (MORNING_REMINDER, EVENING_REMINDER)]


class CalendarCog(commands.Cog):
    """Cog that mirrors WebDAV calendars into reminders for one channel"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.log = bot.get_cog_logger("calendar")

        self.tz = get_timezone()
        self.source = WebDAVCalendarSource(
            config.webdav_url,
            username=config.webdav_username,
            password=config.webdav_password,
            path=config.webdav_path,
        )
        self.normalizer = EventNormalizer(
            tz=self.tz,
            lookahead=timedelta(days=config.lookahead_days),
            skip_malformed=config.skip_malformed_calendars,
        )
        self.store = EventStore()
        self.sink = ChannelSink(bot, config.channel_id)
        self.scheduler = ReminderScheduler(self.store, self.sink, date_format=config.date_format)

        # Set once the first refresh attempt finished, successful or not
        self.first_refresh_done = asyncio.Event()
        self._online_announced = False

        self.refresh_task.change_interval(hours=config.refresh_interval_hours)
        self.alarm_scan_task.change_interval(minutes=config.alarm_scan_interval_minutes)
        self.daily_reminder_task.change_interval(time=daily_reminder_times())

        self.refresh_task.start()
        self.alarm_scan_task.start()
        self.daily_reminder_task.start()

    def cog_unload(self):
        """Cleanup when cog is unloaded"""
        self.refresh_task.cancel()
        self.alarm_scan_task.cancel()
        self.daily_reminder_task.cancel()

    async def refresh(self) -> List[NormalizedEvent]:
        """Fetch, normalize and install all calendars; returns the added events.

        On any fetch or parse error the previous events stay in place.
        """
        try:
            calendars = await self.source.fetch_calendars()
            events = self.normalizer.normalize(calendars, get_current_time(self.tz))
        except SourceFetchError as e:
            self.log.error(f"Calendar fetch failed, keeping {len(self.store)} events: {e}")
            return []
        except CalendarParseError as e:
            self.log.error(f"Calendar parse failed, keeping {len(self.store)} events: {e}")
            return []

        added = self.store.replace(events)

        if added and config.announce_new_events:
            sent = await self.scheduler.announce_added(added)
            self.log.info(f"🆕 Announced {sent}/{len(added)} new events")
        return added

    @tasks.loop(hours=12)
    async def refresh_task(self):
        """Periodic calendar refresh"""
        try:
            await self.refresh()
        finally:
            self.first_refresh_done.set()

    @refresh_task.before_loop
    async def before_refresh(self):
        await self.bot.wait_until_ready()

    @tasks.loop(minutes=5)
    async def alarm_scan_task(self):
        """Periodic scan for VALARM reminders due within the next hour"""
        due = self.scheduler.scan_alarms(get_current_time(self.tz))
        if due:
            self.log.info(f"⏰ Scheduled {len(due)} alarm reminders")

    @alarm_scan_task.before_loop
    async def before_alarm_scan(self):
        await self.bot.wait_until_ready()
        await self.first_refresh_done.wait()

    @tasks.loop(hours=24)
    async def daily_reminder_task(self):
        """Runs at 08:00 and 20:00 local time"""
        now = get_current_time(self.tz)
        slot = daily_slot(now)
        if slot is None:
            self.log.warning(f"Daily reminder run at {now:%H:%M:%S} is too far from 08:00 and 20:00, skipping")
            return
        await self.scheduler.send_daily(slot)

    @daily_reminder_task.before_loop
    async def before_daily_reminders(self):
        await self.bot.wait_until_ready()

    @commands.Cog.listener()
    async def on_ready(self):
        if config.announce_online and not self._online_announced:
            self._online_announced = True
            if await self.sink.send(ONLINE_MESSAGE):
                self.log.info("Online message sent")

    @app_commands.command(name="next", description="Show upcoming calendar events")
    async def next_events(self, interaction: discord.Interaction):
        """List the next upcoming events"""
        upcoming = self.store.upcoming(config.upcoming_limit, get_current_time(self.tz))
        await interaction.response.send_message(format_upcoming(upcoming, config.date_format))


async def setup(bot):
    await bot.add_cog(CalendarCog(bot))
