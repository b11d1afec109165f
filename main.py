#!/usr/bin/env python3
"""
Presence Tracker - Discord bot for game server player presence
Reconciles the server log into online players, playtime history and statistics
"""

import asyncio
import logging
import sys
import traceback

import discord
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv

from bot.config import TrackerConfig, build_log_source
from bot.parsers.player_tracker import PlayerTracker
from bot.utils.exceptions import ConfigurationException
from bot.utils.log_sources import FileLogSource

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def setup_logging(level: str = 'INFO'):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('bot.log', encoding='utf-8')
        ]
    )


class PresenceTrackerBot(discord.Bot):
    """Bot that owns the player tracker and the reconciliation schedule"""

    def __init__(self, config: TrackerConfig):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            intents=intents,
            status=discord.Status.online,
            activity=discord.Game(name="Tracking players"),
        )

        self.config = config
        self.scheduler = AsyncIOScheduler()
        self.log_source = build_log_source(config)
        self.follow_task = None

        push_mode = config.follow_log and isinstance(self.log_source, FileLogSource)
        self.player_tracker = PlayerTracker(
            self.log_source,
            config.data_path,
            scan_window=config.scan_window_lines,
            source_timeout=config.log_source_timeout,
            top_players_limit=config.top_players_limit,
            scan_on_query=not push_mode,
        )

        self.load_cogs()
        logger.info(f"Bot initialized with {config.log_source} log source")

    def load_cogs(self):
        from bot.cogs.players import Players

        try:
            self.add_cog(Players(self))
            logger.info("✅ Successfully loaded cog: Players")
        except Exception as e:
            logger.error(f"❌ Failed to load cog Players: {e}")
            logger.error(f"Cog error traceback: {traceback.format_exc()}")

    async def on_ready(self):
        """Called when bot is ready and connected to Discord"""
        # Only run setup once
        if hasattr(self, '_setup_complete'):
            logger.info("Bot already setup, skipping duplicate setup")
            return
        self._setup_complete = True

        logger.info("🚀 Bot is ready! Starting player tracking...")
        await self.player_tracker.initialize()

        if self.player_tracker.scan_on_query:
            self.scheduler.add_job(
                self.run_scan,
                'interval',
                seconds=self.config.scan_interval_seconds,
                id='presence_scan',
                max_instances=1,
                coalesce=True
            )
            logger.info(f"📜 Presence scan scheduled ({self.config.scan_interval_seconds}s interval)")
        else:
            self.follow_task = asyncio.create_task(self.follow_log())
            logger.info(f"📜 Following {self.log_source.path} for live presence updates")

        self.scheduler.start()
        logger.info("✅ Scheduler started")

    async def run_scan(self):
        try:
            await self.player_tracker.scan()
        except Exception as e:
            logger.error(f"Presence scan failed: {e}")

    async def follow_log(self, retry_delay: float = 5.0):
        """Push every appended log line straight into the parser, restarting on errors"""
        parser = self.player_tracker.parser
        while True:
            try:
                async for line in self.log_source.follow(parser.position):
                    parser.process_line(line, position=self.log_source.follow_position)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Following {self.log_source.path} failed, restarting in {retry_delay}s: {e}")
                await asyncio.sleep(retry_delay)

    async def close(self):
        """Clean shutdown"""
        logger.info("Shutting down bot...")

        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")

        if self.follow_task is not None:
            self.follow_task.cancel()
            try:
                await self.follow_task
            except asyncio.CancelledError:
                pass

        await self.player_tracker.shutdown()
        await super().close()
        logger.info("Bot shutdown complete")


async def main():
    """Main entry point"""
    try:
        config = TrackerConfig.from_env()
    except ConfigurationException as e:
        setup_logging()
        logger.error(f"❌ Invalid configuration: {e}")
        return

    setup_logging(config.log_level)

    if not config.bot_token:
        logger.error("❌ BOT_TOKEN not found in environment variables")
        return

    bot = PresenceTrackerBot(config)
    try:
        await bot.start(config.bot_token)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    asyncio.run(main())
