import asyncio
import logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from lms.actions.borrowing import sweep_overdue

logger = logging.getLogger(__name__)

async def sweep_once(sessionmaker: async_sessionmaker[AsyncSession]) -> int:
    async with sessionmaker() as session:
        return await sweep_overdue(session)

async def run_sweeper(sessionmaker: async_sessionmaker[AsyncSession], interval_seconds: int):
    interval = max(5, int(interval_seconds))
    logger.info("[sweeper] Started. Interval: %ss", interval)
    while True:
        try:
            flipped = await sweep_once(sessionmaker)
            if flipped:
                logger.info("[sweeper] %s borrow(s) marked overdue.", flipped)
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("[sweeper] Stopped.")
            raise
        except Exception:
            logger.exception("[sweeper] Error in sweep cycle")
            await asyncio.sleep(interval * 2)
