"""Logging setup for the docembed CLI.

Library modules only ever call ``logging.getLogger(__name__)``; handlers and
levels are configured once here, from the CLI entry point.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_FORMAT = "%(message)s"


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route all logging (and ``warnings.warn``) through a rich handler.

    Safe to call repeatedly: the docembed handler replaces any previous one.
    """
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.handlers = [
        RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=verbose,
        )
    ]
    for handler in root.handlers:
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="[%X]"))
    root.setLevel(logging.WARNING)
    logging.getLogger("docembed").setLevel(logging.DEBUG if verbose else logging.WARNING)
    # litellm is chatty at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
