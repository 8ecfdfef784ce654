import discord
from discord.ext import commands
from discord import app_commands
from datetime import datetime, timezone

from core.errors import CommandValidationError

MAX_PURGE_AMOUNT = 100  # Discord bulk delete limit


def validate_purge_amount(amount: int) -> int:
    if amount < 1 or amount > MAX_PURGE_AMOUNT:
        raise CommandValidationError(f"Amount must be between 1 and {MAX_PURGE_AMOUNT}.")
    return amount


class ModerationCog(commands.Cog):
    def __init__(self, bot):
        self.bot = bot
        self.log = bot.get_cog_logger("mod")

    @app_commands.command(name="clear", description="Delete a specified number of messages from the current channel")
    @app_commands.describe(amount="Number of messages to delete (1-100)")
    @app_commands.default_permissions(administrator=True)
    async def clear_messages(self, interaction: discord.Interaction, amount: int):
        """Clear specified number of messages from channel"""
        if interaction.guild is None:
            await interaction.response.send_message("❌ This command can only be used in a server.", ephemeral=True)
            return

        if not interaction.user.guild_permissions.administrator:
            await interaction.response.send_message("❌ You need administrator permissions to use this command.", ephemeral=True)
            return

        if not interaction.guild.me.guild_permissions.manage_messages:
            await interaction.response.send_message("❌ I don't have permission to delete messages in this channel.", ephemeral=True)
            return

        try:
            validate_purge_amount(amount)
        except CommandValidationError as e:
            await interaction.response.send_message(f"❌ {e}", ephemeral=True)
            return

        # Deleting may take a while
        await interaction.response.defer(ephemeral=True)

        channel = interaction.channel
        try:
            deleted = await channel.purge(limit=amount)
        except discord.Forbidden:
            await interaction.followup.send("❌ I don't have permission to delete messages in this channel.", ephemeral=True)
            return
        except discord.HTTPException as e:
            self.log.warning(f"Purge in channel {channel.id} failed: {e}")
            if e.code == 50034:  # You can only bulk delete messages that are under 14 days old
                await interaction.followup.send("❌ Cannot delete messages older than 14 days. Try with a smaller number.", ephemeral=True)
            else:
                await interaction.followup.send("❌ An error occurred while deleting messages.", ephemeral=True)
            return

        deleted_count = len(deleted)
        embed = discord.Embed(
            title="🧹 Messages Cleared",
            description=f"Successfully deleted {deleted_count} message{'s' if deleted_count != 1 else ''} from {channel.mention}",
            color=0x00ff00,
            timestamp=datetime.now(timezone.utc)
        )
        embed.set_footer(text=f"Cleared by {interaction.user.display_name}", icon_url=interaction.user.display_avatar.url)

        await interaction.followup.send(embed=embed, ephemeral=True)
        self.log.info(f"{interaction.user} cleared {deleted_count} messages in channel {channel.id}")


async def setup(bot):
    await bot.add_cog(ModerationCog(bot))
