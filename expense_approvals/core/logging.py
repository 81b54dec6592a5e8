import sys

from loguru import logger

from .config import settings


def setup_logging():
    """
    Configure the global loguru logger once for the process.

    Structured context is passed as keyword arguments at the call site
    (e.g. ``logger.info("Expense decided", expense_id=...)``) and ends up in
    ``record["extra"]``; with LOG_JSON=true every record is serialized so the
    extras are machine-readable.
    """
    logger.remove()
    if settings.log_json:
        logger.add(sys.stderr, level=settings.log_level.upper(), serialize=True)
    else:
        logger.add(
            sys.stderr,
            level=settings.log_level.upper(),
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
                "<level>{message}</level> | {extra}"
            ),
        )
    return logger
