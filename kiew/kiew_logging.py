# kiew_logging.py - Import first; configures the root logger for the whole process
import os
import sys
import logging
from logging.handlers import TimedRotatingFileHandler

LOG_DIR = os.environ.get('KIEW_LOG_DIR', 'user/logs')
LOG_LEVEL = os.environ.get('KIEW_LOG_LEVEL', 'INFO').upper()
LOG_FORMAT = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# Startup failures land here even if the rest of logging never comes up
_startup_log = None
try:
    os.makedirs(LOG_DIR, exist_ok=True)
    _startup_log = open(os.path.join(LOG_DIR, 'startup_errors.log'), 'a')
    _startup_log.write("\n--- kiew starting ---\n")
except OSError:
    _startup_log = None


def log_startup_error(msg):
    if _startup_log:
        _startup_log.write(f"{msg}\n")
        _startup_log.flush()
    print(msg, file=sys.stderr)


def _build_handlers():
    handlers = []

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(LOG_FORMAT)
    handlers.append(console)

    try:
        daily = TimedRotatingFileHandler(os.path.join(LOG_DIR, 'kiew.log'), when='midnight', backupCount=30)
        daily.setFormatter(LOG_FORMAT)
        handlers.append(daily)
    except OSError as e:
        log_startup_error(f"File logging disabled: {e}")

    return handlers


root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
for handler in root_logger.handlers[:]:
    root_logger.removeHandler(handler)
for handler in _build_handlers():
    root_logger.addHandler(handler)

# SDK HTTP chatter and per-request access lines
for noisy in ('httpx', 'httpcore', 'openai', 'anthropic', 'uvicorn.access'):
    logging.getLogger(noisy).setLevel(logging.WARNING)
