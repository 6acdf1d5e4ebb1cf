from __future__ import annotations

import logging
import sys

# between INFO and DEBUG: one line per extracted entry.
VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_LEVEL_ENV = "FSEXTRACT_LOG_LEVEL"

LEVELS: dict[str, int] = {
    "quiet": logging.ERROR,
    "info": logging.INFO,
    "verbose": VERBOSE,
    "debug": logging.DEBUG,
}


def configure(level_name: str) -> None:
    level = LEVELS.get(level_name)
    if level is None:
        raise ValueError(
            f"do not know log-level value '{level_name}'. Needs one of: {', '.join(LEVELS)}"
        )
    logger = logging.getLogger("fsextract")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
