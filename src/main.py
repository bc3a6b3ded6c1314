import asyncio
import logging
import signal

from config import CFG, DB_PATH, is_default_secret_key, is_places_lookup_enabled
from logging_setup import configure_logging

configure_logging("reviewfunnel")

from database import init_db
from api_server import create_api_app, start_api_server, stop_api_server


logger = logging.getLogger(__name__)


async def main():
    """Application entry point."""
    await init_db(DB_PATH)

    if is_default_secret_key(CFG):
        logger.warning("SECRET_KEY is not set; sessions are signed with the development key")
    if not is_places_lookup_enabled(CFG):
        logger.info("GOOGLE_MAPS_API_KEY is not set; /admin/maps lookups will fail")
    if CFG.tenant_config_file:
        logger.info("TENANT_CONFIG_FILE=%s; new businesses appear after re-export", CFG.tenant_config_file)

    api_app = create_api_app(config=CFG, db_path=DB_PATH)
    api_runner = await start_api_server(api_app, CFG)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers.
            pass

    try:
        await stop_event.wait()
    finally:
        # on_cleanup drains pending feedback mirror tasks.
        await stop_api_server(api_runner)


if __name__ == "__main__":
    asyncio.run(main())
