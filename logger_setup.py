import os
import logging
import sys
import traceback
from datetime import datetime

def setup_logger(name=None, log_prefix='bucket_pruner', verbose=False):
    """
    Set up a logger with file and console handlers.
    File: logs/{prefix}_{timestamp}.log (DEBUG level)
    Console: stdout (INFO level, DEBUG with verbose)

    With name=None the handlers go on the root logger, so every module
    logger (listing_engine, deletion_orchestrator, ...) propagates to them.
    """
    # Create logs directory
    os.makedirs('logs', exist_ok=True)

    # Includes [module:line] for easier tracing
    LOG_FORMAT = '%(asctime)s [%(levelname)s] [%(name)s:%(lineno)d] %(message)s'
    LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_filename = os.path.join('logs', f"{log_prefix}_{timestamp}.log")

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if already setup
    if not logger.handlers:
        try:
            file_handler = logging.FileHandler(log_filename, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not create log file {log_filename}: {e}")

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        logger.addHandler(console_handler)

    # requests/urllib3 connection chatter stays out of the console
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logger, log_filename

def format_api_error(e):
    """
    Format an object-store API error for logging.
    Extracts HTTP status, the API's error codes and messages, and flags
    rate limiting.
    """
    error_msg = f"API Error: {str(e)}"

    status = getattr(e, 'status', None)
    if status:
        error_msg += f"\n  - HTTP Status: {status}"

    for err in getattr(e, 'errors', None) or []:
        if isinstance(err, dict):
            error_msg += f"\n  - Error {err.get('code', '?')}: {err.get('message', '')}"
        else:
            error_msg += f"\n  - Error: {err}"

    from providers.interface import RateLimitError
    if isinstance(e, RateLimitError):
        error_msg += "\n  - Type: Rate Limit (retryable)"
    elif getattr(e, 'retryable', False):
        error_msg += "\n  - Type: Transient (retryable)"

    return error_msg

def log_exception(logger, message, exc=None):
    """Helper to log an exception with full context."""
    if exc:
        logger.error(f"{message}: {str(exc)}")
        logger.debug(''.join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    else:
        logger.exception(message)
