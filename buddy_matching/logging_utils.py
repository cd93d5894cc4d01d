import logging

from rich.logging import RichHandler

LOG_FORMAT = "%(name)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Route all library loggers through a single rich handler."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
