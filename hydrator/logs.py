"""
Console logging with colored level prefixes.
"""

import logging

import click

_LEVEL_STYLES = {
    logging.DEBUG: ("DEBUG", "blue"),
    logging.INFO: ("INFO", "green"),
    logging.WARNING: ("WARN", "yellow"),
    logging.ERROR: ("ERROR", "red"),
    logging.CRITICAL: ("ERROR", "red"),
}


class ColorFormatter(logging.Formatter):
    """Formats records as ``[LEVEL] message`` with a colored level tag."""

    def __init__(self, color: bool = True):
        super().__init__("%(message)s")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        label, color = _LEVEL_STYLES.get(record.levelno, (record.levelname, None))
        prefix = f"[{label}]"
        if self.color and color:
            prefix = click.style(prefix, fg=color, bold=record.levelno >= logging.ERROR)
        return f"{prefix} {super().format(record)}"


def setup_logging(verbose: bool = False, color: bool = True) -> None:
    """
    Configure the ``hydrator`` logger hierarchy for console output.

    Args:
        verbose: Emit DEBUG records as well
        color: Colorize level prefixes
    """
    logger = logging.getLogger("hydrator")
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(ColorFormatter(color=color))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
