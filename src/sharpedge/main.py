"""Application entry point."""

import asyncio
import logging
import signal
import sys

from sharpedge.config import get_config
from sharpedge.config.policy import PostgresPolicySource
from sharpedge.config.settings import AppConfig
from sharpedge.db import close_pool, get_pool
from sharpedge.discord_bot.bot import AlertsBot
from sharpedge.discord_bot.publisher import BotNotificationSink
from sharpedge.execution.paper import PaperExecutionClient
from sharpedge.ingestion.markets import PolymarketProvider
from sharpedge.ingestion.odds import TheOddsApiProvider
from sharpedge.ledger.events import NotificationSink, NullNotificationSink
from sharpedge.ledger.ledger import BetLedger
from sharpedge.ledger.postgres import PostgresPositionRepository
from sharpedge.scheduler.engine import ArbitrageEngine

logger = logging.getLogger(__name__)


def build_engine(config: AppConfig, pool, sink: NotificationSink) -> ArbitrageEngine:
    """Wire collaborators for one policy owner."""
    market_provider = PolymarketProvider(config)
    execution = PaperExecutionClient(config.paper_starting_balance, market_provider)
    ledger = BetLedger(PostgresPositionRepository(pool), config.owner_id, sink)

    return ArbitrageEngine(
        config=config,
        policy_source=PostgresPolicySource(pool),
        odds_provider=TheOddsApiProvider(config),
        market_provider=market_provider,
        execution=execution,
        ledger=ledger,
    )


async def boot() -> None:
    """
    Boot sequence: load config → initialize pool → start alerts bot → run engine → shutdown.

    Raises:
        SystemExit: On configuration or database errors
    """
    config = get_config()
    logger.info(f"Configuration loaded: env={config.env}, owner={config.owner_id}")

    if not config.dry_run:
        logger.error("Live execution is not available; set DRY_RUN=true to trade on paper")
        raise SystemExit(1)

    try:
        pool = await get_pool()
    except Exception as e:
        logger.error(f"Boot sequence failed: {e}")
        raise SystemExit(1) from e
    logger.info(f"Database pool initialized: min={config.db_pool_min}, max={config.db_pool_max}")

    bot: AlertsBot | None = None
    sink: NotificationSink = NullNotificationSink()
    if config.discord_token.get_secret_value():
        bot = AlertsBot(config)
        bot.start_background()
        sink = BotNotificationSink(bot)
    else:
        logger.info("DISCORD_TOKEN not set, notifications disabled")

    engine = build_engine(config, pool, sink)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, engine.stop)

    try:
        if bot is not None:
            await bot.wait_ready()
        # Paper holdings are not persisted, so there is nothing to reconcile against
        await engine.run(reconcile_on_start=False)
    finally:
        if bot is not None:
            await bot.shutdown()
        await close_pool()
        logger.info("Application shutdown complete")


def main() -> None:
    """Main entry point with logging configuration."""
    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(boot())
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
