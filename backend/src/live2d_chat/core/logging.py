import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# httpx logs one INFO line per upstream completion call; only useful when debugging
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    """Initialize or update the root logger with the live2d format.

    Transport loggers stay at WARNING unless the service itself runs at DEBUG.
    """
    desired_level = getattr(logging, level.upper(), logging.INFO)
    transport_level = logging.DEBUG if desired_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)

    root = logging.getLogger()
    if root.handlers:
        root.setLevel(desired_level)
        for handler in root.handlers:
            handler.setLevel(desired_level)
        return
    logging.basicConfig(level=desired_level, format=LOG_FORMAT)
    logging.getLogger("live2d").info("Logging configured: level=%s", level)


if os.getenv("ENV", "development") == "development":
    configure_logging()
