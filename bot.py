#!/usr/bin/env python3

import asyncio
import logging
import sys

from placedefender.config import SESSIONS_ENV, VERSION, load_config
from placedefender.log import configure_logging
from placedefender.scheduler import run_agent

logger = logging.getLogger("placedefender")


def main(argv=None) -> int:
    config = load_config(argv)
    configure_logging(config.log_level, config.log_file)

    if not config.sessions:
        logger.error("Missing account sessions. Pass them as an argument or set $%s.", SESSIONS_ENV)
        return 1

    logger.info("placedefender %s, %d account(s).", VERSION, len(config.sessions))
    try:
        asyncio.run(run_agent(config))
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt: Exiting Application")
    return 0


if __name__ == '__main__':
    sys.exit(main())
