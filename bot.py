# bot.py
import os
import sys
import logging
from logging.handlers import RotatingFileHandler
import aiohttp
import asyncio
from datetime import datetime, timezone
import traceback
from typing import Dict, Optional

import discord
from discord.ext import commands

from core.config import config
from core.http_client import close_http_client

# ─── Webhook Log Handler ────────────────────────────────────────────────────
class WebhookLogHandler(logging.Handler):
    """Logging handler that forwards records to a Discord webhook as embeds"""

    colors = {
        'DEBUG': 0x808080,
        'INFO': 0x0099ff,
        'WARNING': 0xff9900,
        'ERROR': 0xff0000,
        'CRITICAL': 0x8b0000,
    }
    emojis = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    def __init__(self, webhook_url: str, bot_instance: Optional[commands.Bot] = None):
        super().__init__()
        self.webhook_url = webhook_url
        self.bot = bot_instance
        self.session: Optional[aiohttp.ClientSession] = None
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    async def start_webhook_worker(self):
        if not self.session:
            self.session = aiohttp.ClientSession()

        if not self.task or self.task.done():
            self.task = asyncio.create_task(self._webhook_worker())

    async def stop_webhook_worker(self):
        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        if self.session and not self.session.closed:
            await self.session.close()

    def emit(self, record):
        # Only records emitted on the bot's own loop are forwarded
        if not self.bot or self.bot.is_closed():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if loop is self.bot.loop:
            self.queue.put_nowait(record)

    async def _webhook_worker(self):
        while True:
            record = await self.queue.get()
            try:
                await self._send_webhook(record)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                print(f"Error sending log webhook: {e}", file=sys.stderr)
                await asyncio.sleep(1)

    def build_payload(self, record: logging.LogRecord) -> dict:
        embed = {
            "title": f"{self.emojis.get(record.levelname, '📝')} {record.levelname} - {record.name}",
            "description": self.format(record)[:2000],
            "color": self.colors.get(record.levelname, 0x808080),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "fields": [
                {"name": "Module", "value": record.name, "inline": True},
                {"name": "Function", "value": f"{record.funcName}:{record.lineno}", "inline": True},
            ]
        }

        if record.exc_info:
            exc_text = ''.join(traceback.format_exception(*record.exc_info))
            embed["fields"].append({
                "name": "Exception Details",
                "value": f"```python\n{exc_text[:1000]}{'...' if len(exc_text) > 1000 else ''}\n```",
                "inline": False
            })

        return {"embeds": [embed], "username": "Calendar Bot Logger"}

    async def _send_webhook(self, record):
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()

        async with self.session.post(self.webhook_url, json=self.build_payload(record)) as resp:
            if resp.status not in (200, 204):
                print(f"Log webhook failed with status {resp.status}", file=sys.stderr)

# ─── Logging ────────────────────────────────────────────────────────────────
LOG_FORMAT  = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_DIR = "logs"


def setup_logging() -> logging.Logger:
    os.makedirs(LOG_DIR, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(f"{LOG_DIR}/calbot.log", maxBytes=5*1024*1024, backupCount=3, encoding="utf-8")
        ]
    )
    return logging.getLogger("calbot")


log = logging.getLogger("calbot")

# ─── Intents & COG-Liste ────────────────────────────────────────────────────
intents = discord.Intents.default()
intents.message_content = True

COGS = ["cogs.calendar", "cogs.moderation", "cogs.runner"]

# ─── Bot-Klasse ─────────────────────────────────────────────────────────────
class CalendarBot(commands.Bot):
    def __init__(self):
        super().__init__(command_prefix="!", intents=intents)

        self.webhook_handler: Optional[WebhookLogHandler] = None
        self.cog_loggers: Dict[str, logging.Logger] = {}

        if config.log_webhook_url:
            self.setup_webhook_logging(config.log_webhook_url)

    def setup_webhook_logging(self, webhook_url: str):
        self.webhook_handler = WebhookLogHandler(webhook_url, self)
        self.webhook_handler.setLevel(logging.WARNING)
        self.webhook_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        log.addHandler(self.webhook_handler)
        log.info("Webhook logging handler initialized")

    def get_cog_logger(self, cog_name: str) -> logging.Logger:
        """Get or create a logger for a specific cog"""
        logger_name = f"calbot.{cog_name}"

        if logger_name not in self.cog_loggers:
            logger = logging.getLogger(logger_name)

            # Cog loggers still propagate to the console handler of the root logger
            if not logger.handlers:
                file_handler = RotatingFileHandler(
                    f"{LOG_DIR}/{cog_name}.log",
                    maxBytes=5*1024*1024,
                    backupCount=2,
                    encoding="utf-8"
                )
                file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
                logger.addHandler(file_handler)

            self.cog_loggers[logger_name] = logger

        return self.cog_loggers[logger_name]

    async def setup_hook(self):
        if self.webhook_handler:
            await self.webhook_handler.start_webhook_worker()
            log.info("✅ Webhook logger started")

        for ext in COGS:
            try:
                await self.load_extension(ext)
                log.info(f"✅ Loaded extension {ext}")
            except commands.ExtensionError as e:
                log.exception(f"❌ Failed to load extension {ext}: {e}")

        if config.guild_id:
            guild = discord.Object(id=config.guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()
        log.info("✅ All slash commands synced")

    async def on_ready(self):
        activity = discord.Activity(type=discord.ActivityType.watching, name="the calendar")
        await self.change_presence(status=discord.Status.online, activity=activity)
        log.info(f"🤖 Logged in as {self.user} (ID: {self.user.id})")

    async def on_command_error(self, ctx, error):
        if isinstance(error, commands.CommandNotFound):
            return

        log.error(
            f"Command error in '{ctx.command}' used by {ctx.author} (ID: {ctx.author.id}): {error}",
            exc_info=error
        )

    async def on_error(self, event, *args, **kwargs):
        log.error(f"Bot error in event '{event}'", exc_info=True)

    async def close(self):
        log.info("🔄 Bot is shutting down...")

        await close_http_client()

        if self.webhook_handler:
            await self.webhook_handler.stop_webhook_worker()
            log.info("✅ Webhook logger stopped")

        await super().close()


def main():
    setup_logging()

    try:
        config.validate()
    except ValueError:
        sys.exit(1)

    config.log_configuration()

    bot = CalendarBot()
    try:
        bot.run(config.discord_token, log_handler=None)
    except KeyboardInterrupt:
        log.info("Bot stopped by user")


# ─── Main ───────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    main()
