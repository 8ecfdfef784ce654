# cogs/runner.py
import asyncio
import json
from typing import Optional

import aiohttp
import discord
from discord import app_commands
from discord.ext import commands

from core.config import config
from core.http_client import http_client


def extract_token(body: str, content_type: Optional[str] = None) -> str:
    """Pull the token out of the API response body.

    JSON bodies must carry a ``token`` field; anything else is taken as the
    token itself.
    """
    text = body.strip()
    looks_like_json = (content_type or "").startswith("application/json") or text.startswith("{")
    if looks_like_json:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON response: {e}") from e
        token = data.get("token") if isinstance(data, dict) else None
    else:
        token = text

    if not token:
        raise ValueError("Response did not contain a token")
    return str(token)


class RunnerCog(commands.Cog):
    """Relays runner registration tokens from the token API"""

    def __init__(self, bot):
        self.bot = bot
        self.log = bot.get_cog_logger("runner")

    async def fetch_token(self) -> str:
        headers = {"Accept": "application/json"}
        if config.token_api_key:
            headers["Authorization"] = f"Bearer {config.token_api_key}"

        session = await http_client.get_session()
        async with session.get(config.token_api_url, headers=headers) as response:
            body = await response.text()
            if response.status != 200:
                raise ValueError(f"Token API returned HTTP {response.status}")
            return extract_token(body, response.headers.get("Content-Type"))

    @app_commands.command(name="runner_token", description="Request a new runner registration token")
    @app_commands.default_permissions(administrator=True)
    async def runner_token(self, interaction: discord.Interaction):
        """Request a runner token and show it to the caller only"""
        if not config.token_api_url:
            await interaction.response.send_message("❌ The token API is not configured.", ephemeral=True)
            return

        if interaction.guild is not None and not interaction.user.guild_permissions.administrator:
            await interaction.response.send_message(
                "❌ You need administrator permissions to use this command.",
                ephemeral=True
            )
            return

        await interaction.response.defer(ephemeral=True)

        try:
            token = await self.fetch_token()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.log.error(f"Token API request failed: {type(e).__name__}: {e}")
            await interaction.followup.send("❌ Could not reach the token API.", ephemeral=True)
            return
        except ValueError as e:
            self.log.error(f"Token API error: {e}")
            await interaction.followup.send(f"❌ {e}", ephemeral=True)
            return

        self.log.info(f"Issued runner token to {interaction.user}")
        await interaction.followup.send(f"🔑 Runner token: `{token}`", ephemeral=True)


async def setup(bot):
    await bot.add_cog(RunnerCog(bot))
