import asyncio
import logging
from typing import NoReturn

import sentry_sdk
from aiohttp import web

from gov.treasury.authrpd.app.config import (
    HealthGaugeAppKey,
    KeyStoreAppKey,
    SettingsAppKey,
    TelegrafStatsdClientAppKey,
)
from gov.treasury.authrpd.keys.periods import period_id
from gov.treasury.authrpd.keys.store import KeyStore

logger = logging.getLogger(__name__)


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Tick the health gauge every 30 seconds, reducing the error count by 1 each time.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    while True:
        await health_gauge.tick()
        await asyncio.sleep(30)


async def ensure_current_key(key_store: KeyStore) -> str:
    """Make sure the current period has a signing key. Returns the period id."""
    current = period_id()
    await key_store.ensure_period_key(current)
    return current


async def key_rotation_task(app: web.Application) -> NoReturn:
    """
    Background process that keeps a signing key ready for the current period.

    Issuance creates the key lazily as well, so this only moves the key
    generation off the request path around a month boundary. Failures are
    reported and retried on the next run.
    """
    logger.info("Starting key rotation task")

    settings = app[SettingsAppKey]
    key_store = app[KeyStoreAppKey]
    statsd_client = app[TelegrafStatsdClientAppKey]
    health_gauge = app[HealthGaugeAppKey]

    while True:
        try:
            current = await ensure_current_key(key_store)
            logger.debug("Signing key for %s is in place", current)
            statsd_client.increment(
                "authrpd.task.key_rotation.success", 1, tag_dict={"period": current}
            )
        except (OSError, ValueError) as e:
            logger.exception("Key rotation failed")
            sentry_sdk.capture_exception(e)
            await health_gauge.womp()
            statsd_client.increment(
                "authrpd.task.key_rotation.exception",
                1,
                tag_dict={"exception": type(e).__name__},
            )

        await asyncio.sleep(settings.key_rotation_interval)
