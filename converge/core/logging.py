"""Logging setup shared by the CLI entry points."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.WARNING, force: bool = False) -> None:
    """Initialise the root logger with a terse format on stderr.

    Pass ``force=True`` to reconfigure (every CLI invocation does, so repeated
    invocations in one process pick up the current stderr).
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
