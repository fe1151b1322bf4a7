# Main File

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path

import dotenv
from aiohttp import web

from callscribe.api.routes import create_app
from callscribe.constructor import ServerManagerType
from callscribe.context import Context
from callscribe.server.constructor import construct_server_manager
from callscribe.services.constructor import construct_services_manager

dotenv.load_dotenv(dotenv_path=".env.local")

# Configure Python's built-in logging for server initialization
# (before AsyncLoggingService is available)
logs_dir = Path(os.getenv("LOG_DIR", "logs"))
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

# Configure logging to output to both console and file
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

SHUTDOWN_TIMEOUT_SECONDS = 60.0


# -------------------------------------------------------------- #
# Run Service
# -------------------------------------------------------------- #


async def main():
    """Boot servers and services, then serve the HTTP API until a stop signal."""
    # -------------------------------------------------------------- #
    # Startup services
    # -------------------------------------------------------------- #

    # We need to print to console initially since logging service isn't set up yet
    print("=" * 40)
    print("Syncing services...")

    environment = ServerManagerType.from_env(os.getenv("APP_ENV"))

    # Create context object
    context = Context()

    # init server manager
    servers_manager = construct_server_manager(environment, context)
    context.set_server_manager(servers_manager)
    await servers_manager.connect_all()
    print("[OK] Connected all servers.")

    # Use the same log file that was created for built-in logging
    services_manager = construct_services_manager(
        environment,
        context=context,
        default_logging_path=str(logs_dir),
        log_file=log_file.name,
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    # Now we can use the async logger
    logger = services_manager.logging_service
    await logger.info(f"[OK] Initialized all services ({environment.value}).")

    # -------------------------------------------------------------- #
    # Start HTTP API
    # -------------------------------------------------------------- #

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8080"))

    runner = web.AppRunner(create_app(context))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    await logger.info(f"[OK] Serving transcription API on http://{host}:{port}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await stop_event.wait()

    # -------------------------------------------------------------- #
    # Graceful shutdown
    # -------------------------------------------------------------- #

    await logger.info("Stop signal received, shutting down...")
    await runner.cleanup()
    await services_manager.shutdown_all(timeout=SHUTDOWN_TIMEOUT_SECONDS)


if __name__ == "__main__":
    asyncio.run(main())
