"""
Run the reactor against the build service bus.

Examples:
  python -m reactor --config /etc/reactor/reactor.yaml
  python -m reactor --config reactor.yaml --actions actions.yaml --log-level DEBUG
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .bus import AMQPBusSession
from .config import load_config
from .engine import Reactor
from .exceptions import ConfigUnreadable, ReactorError
from .loader import ActionLoader

logger = logging.getLogger('reactor')


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='reactor',
        description='Trigger CI calls and local commands from build service events',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('-c', '--config', type=Path, help='Reactor configuration file (YAML)')
    parser.add_argument('-a', '--actions', type=Path, help='Actions document, overrides the configuration')
    parser.add_argument('--log-level', help='Log level, overrides the configuration')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = _parse_args(argv)

    try:
        config = load_config(args.config, overrides={'actions': args.actions, 'log_level': args.log_level})
    except ConfigUnreadable as exc:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        logger.error('%s', exc)
        return 1

    logging.basicConfig(level=config.log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    if config.actions is None:
        logger.error('No actions document configured; use --actions or the "actions" key')
        return 1

    try:
        actions = ActionLoader().load_path(config.actions)
    except ConfigUnreadable as exc:
        logger.error('%s', exc)
        return 1

    reactor = Reactor(AMQPBusSession(config.bus), actions, settings=config.dispatch)
    try:
        asyncio.run(reactor.run())
    except ReactorError as exc:
        logger.error('Reactor stopped: %s', exc)
        return 1
    except KeyboardInterrupt:
        logger.info('Interrupted')
    return 0


if __name__ == '__main__':
    sys.exit(main())
