# main.py - kiew entry point
import sys
import signal
import threading
import time

# CRITICAL: Import logging setup FIRST before any kiew modules
import kiew.kiew_logging
import logging
logger = logging.getLogger(__name__)

# Wrap all further imports to catch errors
try:
    import uvicorn
    import config
    from kiew.api_fastapi import app, set_system
    from kiew.errors import ConfigurationError, StorageError
    from kiew.system import KiewSystem
except Exception as e:
    kiew.kiew_logging.log_startup_error(f"FATAL: Import error during startup: {e}")
    logger.critical(f"FATAL: Import error during startup: {e}", exc_info=True)
    sys.exit(1)

_shutdown_requested = False


def run():
    """Main application entry point. Returns exit code."""
    global _shutdown_requested
    _shutdown_requested = False

    def handle_shutdown_signal(signum, frame):
        global _shutdown_requested
        _shutdown_requested = True

    signal.signal(signal.SIGINT, handle_shutdown_signal)
    if hasattr(signal, 'SIGTERM'):
        signal.signal(signal.SIGTERM, handle_shutdown_signal)

    try:
        system = KiewSystem()
        system.load()
    except (ConfigurationError, StorageError) as e:
        logger.critical(f"FATAL: {e}")
        return 1

    try:
        set_system(system)

        server_config = uvicorn.Config(
            app,
            host=config.API_HOST,
            port=config.API_PORT,
            log_level="info",
        )
        server = uvicorn.Server(server_config)

        server_thread = threading.Thread(target=server.run, daemon=True)
        server_thread.start()
        logger.info(f"kiew ({system.bot_name}) listening on http://{config.API_HOST}:{config.API_PORT}")

        while not _shutdown_requested and server_thread.is_alive():
            time.sleep(0.5)

        logger.info("Shutdown signal received...")
        server.should_exit = True
        server_thread.join(timeout=10)
    finally:
        system.stop()

    return 0


if __name__ == "__main__":
    sys.exit(run())
