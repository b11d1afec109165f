import discord
from discord.ext import commands
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from bot.models.players import HistoryEntry
from bot.parsers.player_tracker import format_duration
from bot.utils.input_validator import InputValidator

logger = logging.getLogger(__name__)

EMBED_COLOR = 0x00d38a
MAX_LISTED = 25


def build_online_embed(players: List[Dict[str, Any]]) -> discord.Embed:
    embed = discord.Embed(
        title=f"🟢 Players Online ({len(players)})",
        color=EMBED_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    if not players:
        embed.description = "Nobody is online right now."
        return embed

    ordered = sorted(players, key=lambda p: p['session_duration_seconds'], reverse=True)
    lines = [f"**{p['name']}** - {p['session_duration']}" for p in ordered[:MAX_LISTED]]
    if len(ordered) > MAX_LISTED:
        lines.append(f"...and {len(ordered) - MAX_LISTED} more")
    embed.description = "\n".join(lines)
    return embed


def build_history_embed(entries: List[HistoryEntry]) -> discord.Embed:
    embed = discord.Embed(
        title=f"📜 Player History ({len(entries)} players)",
        color=EMBED_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    if not entries:
        embed.description = "No players have been seen yet."
        return embed

    lines = []
    for entry in entries[:MAX_LISTED]:
        last_seen = int(entry.last_seen.timestamp())
        lines.append(
            f"**{entry.name}** - {format_duration(entry.play_time)} over "
            f"{entry.session_count} sessions, last seen <t:{last_seen}:R>"
        )
    embed.description = "\n".join(lines)
    return embed


def build_stats_embed(stats: Dict[str, Any]) -> discord.Embed:
    embed = discord.Embed(
        title="📊 Player Statistics",
        color=EMBED_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    embed.add_field(
        name="Players",
        value=f"Total: {stats['total_players']}\n"
              f"New (7d): {stats['new_players_last_7_days']}\n"
              f"Active (7d): {stats['active_players_last_7_days']}",
        inline=True
    )
    embed.add_field(
        name="Playtime",
        value=f"Total: {format_duration(stats['total_playtime'])}\n"
              f"Average: {format_duration(stats['average_playtime'])}\n"
              f"Sessions/player: {stats['average_sessions_per_player']}",
        inline=True
    )
    embed.add_field(name="Peak Online Today", value=str(stats['peak_online_today']), inline=True)

    top = stats['top_players']
    if top:
        embed.add_field(
            name="🏆 Top Players",
            value="\n".join(
                f"{rank}. **{p['name']}** - {format_duration(p['play_time'])} ({p['sessions']} sessions)"
                for rank, p in enumerate(top, start=1)
            ),
            inline=False
        )
    return embed


def build_activity_embed(days: List[Dict[str, Any]]) -> discord.Embed:
    embed = discord.Embed(
        title=f"📅 Daily Activity (last {len(days)} days)",
        description="\n".join(f"`{d['date']}` {d['unique_players']} players" for d in days) or "No data",
        color=EMBED_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    embed.set_footer(text="Players are counted on the day they were last seen")
    return embed


class Players(commands.Cog):
    """Slash commands over the bot's PlayerTracker"""

    def __init__(self, bot):
        self.bot = bot

    @property
    def tracker(self):
        return self.bot.player_tracker

    players = discord.SlashCommandGroup("players", "Player presence and history")
    players_admin = discord.SlashCommandGroup(
        "players-admin",
        "Manage tracked player presence",
        default_member_permissions=discord.Permissions(administrator=True)
    )

    @players.command(name="online", description="Show who is online right now")
    async def players_online(self, ctx: discord.ApplicationContext):
        await ctx.defer()
        try:
            online = await self.tracker.list_online()
            await ctx.followup.send(embed=build_online_embed(online))
        except Exception as e:
            logger.error(f"Error in players online command: {e}")
            await ctx.followup.send("Failed to retrieve online players.", ephemeral=True)

    @players.command(name="history", description="Show recently seen players")
    async def players_history(self, ctx: discord.ApplicationContext):
        await ctx.defer()
        try:
            await ctx.followup.send(embed=build_history_embed(self.tracker.list_history()))
        except Exception as e:
            logger.error(f"Error in players history command: {e}")
            await ctx.followup.send("Failed to retrieve player history.", ephemeral=True)

    @players.command(name="stats", description="Show playtime statistics and top players")
    async def players_stats(self, ctx: discord.ApplicationContext):
        await ctx.defer()
        try:
            await ctx.followup.send(embed=build_stats_embed(self.tracker.statistics()))
        except Exception as e:
            logger.error(f"Error in players stats command: {e}")
            await ctx.followup.send("Failed to retrieve statistics.", ephemeral=True)

    @players.command(name="activity", description="Show distinct players per day")
    async def players_activity(self, ctx: discord.ApplicationContext,
                               days: discord.Option(int, "Number of days", min_value=1, max_value=30,
                                                    required=False) = 7):
        await ctx.defer()
        try:
            await ctx.followup.send(embed=build_activity_embed(self.tracker.daily_activity(days)))
        except Exception as e:
            logger.error(f"Error in players activity command: {e}")
            await ctx.followup.send("Failed to retrieve daily activity.", ephemeral=True)

    @players_admin.command(name="clear", description="Mark every player offline (server stopped)")
    async def players_clear(self, ctx: discord.ApplicationContext):
        cleared = self.tracker.force_clear_online()
        logger.info(f"{ctx.user} cleared {cleared} online players")
        await ctx.respond(f"✅ Marked {cleared} players offline", ephemeral=True)

    @players_admin.command(name="remove", description="Remove one player from the online list")
    async def players_remove(self, ctx: discord.ApplicationContext,
                             name: discord.Option(str, "Player name")):
        player_name = InputValidator.validate_player_name(name)
        if not player_name:
            await ctx.respond("❌ That is not a valid player name", ephemeral=True)
            return

        if self.tracker.remove_player(player_name):
            await ctx.respond(f"✅ Removed **{player_name}** from online players", ephemeral=True)
        else:
            await ctx.respond(f"**{player_name}** is not online", ephemeral=True)


def setup(bot):
    bot.add_cog(Players(bot))
