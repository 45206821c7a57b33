"""
Run command: the long-running push agent.

Refuses to start on a configured cache server, claims the state directory,
then feeds spooled build events to the agent until SIGINT/SIGTERM, and shuts
down gracefully.
"""

import logging
import signal
import threading

from pushagent.agent import EventDispatcher, PushAgent, SpoolDirectory
from pushagent.cli.utils import load_agent_config
from pushagent.core.locking import LockManager

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the agent.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for a clean shutdown)

    Raises:
        ConfigurationError: If the configuration is invalid or this host
            is a cache server
        AgentLockError: If another agent owns the state directory
    """
    config = load_agent_config(args)
    lock_manager = LockManager(config.state_dir)

    with lock_manager.agent_lock():
        agent = PushAgent.from_config(config)
        agent.start()

        dispatcher = EventDispatcher(
            SpoolDirectory(config.spool_dir), agent.submit, config.poll_interval
        )

        if args.once:
            try:
                count = dispatcher.poll_once()
                logger.info(f"Dispatched {count} spooled events")
                agent.drain()
            finally:
                agent.shutdown()
            return 0

        stop = threading.Event()
        _install_signal_handlers(stop)

        dispatcher.start()
        try:
            while not stop.wait(1.0):
                pass
        finally:
            dispatcher.stop(timeout=config.poll_interval + 5)
            agent.shutdown()

    return 0


def _install_signal_handlers(stop: threading.Event):
    def handle(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop.set()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)
