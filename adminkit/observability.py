import logging

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def resolve_log_level(value: str | None) -> int:
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level_name: str | None = None) -> logging.Logger:
    """Install a basic handler when the host has none and set the adminkit level."""
    log_level = resolve_log_level(level_name)

    if not logging.getLogger().handlers:
        logging.basicConfig(level=log_level, format=DEFAULT_LOG_FORMAT)

    logger = logging.getLogger("adminkit")
    logger.setLevel(log_level)
    return logger
