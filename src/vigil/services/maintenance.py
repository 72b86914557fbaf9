import asyncio
import logging

from vigil.core.services import SecurityMonitor

logger = logging.getLogger(__name__)

async def run_maintenance(monitor: SecurityMonitor, interval_seconds: float = 300.0):
    """
    Periodically sweeps elapsed IP counters and expired blacklist entries.
    Lookups stay lazy; this only bounds memory under unique-IP churn.
    """
    logger.info('Maintenance task started (every %.0f seconds).', interval_seconds)
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                result = monitor.sweep()
                if result.ip_counters_removed or result.blacklist_entries_removed:
                    logger.info(
                        'Swept %d IP counters and %d blacklist entries.',
                        result.ip_counters_removed,
                        result.blacklist_entries_removed,
                    )
            except Exception:  # noqa: BLE001 - keep loop alive, log error
                logger.exception('Error in maintenance sweep.')
    except asyncio.CancelledError:
        logger.info('Maintenance task cancellation received.')
        raise
    finally:
        logger.info('Maintenance task stopped.')
