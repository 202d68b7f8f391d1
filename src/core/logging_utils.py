import logging
import logging.config

FORMAT = "%(name)s - %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers that stay at WARNING even in verbose mode
NOISY_LOGGERS = ["botocore", "aiobotocore", "boto3", "urllib3", "sqlalchemy.engine"]


def setup_logging(verbose: bool = False) -> None:
    """Configure the root logger with a rich handler."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "rich": {"format": FORMAT, "datefmt": DATEFMT},
            },
            "handlers": {
                "rich": {
                    "class": "rich.logging.RichHandler",
                    "formatter": "rich",
                    "rich_tracebacks": True,
                },
            },
            "root": {"level": level, "handlers": ["rich"]},
            "loggers": {
                name: {"level": logging.WARNING} for name in NOISY_LOGGERS
            },
        }
    )
    logging.getLogger("device-heartbeat").info(
        f"Logging configured with level {logging.getLevelName(level)}"
    )
