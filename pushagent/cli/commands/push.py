"""
Push command: upload explicit store paths and wait for the result.
"""

import logging

from pushagent.agent import BuildEvent, EventKind, PushAgent, RecordingEventSink
from pushagent.cli.utils import load_agent_config, print_summary, restrict_targets

logger = logging.getLogger(__name__)

FAILURE_KINDS = frozenset(
    {EventKind.FAILED, EventKind.SKIPPED, EventKind.REJECTED, EventKind.DROPPED}
)


def run(args) -> int:
    """
    Run the push command.

    Args:
        args: Parsed command-line arguments

    Returns:
        0 if every accepted path was uploaded, 1 if any failed, was
        skipped for lack of a token or was turned away by the queue
    """
    config = restrict_targets(load_agent_config(args), args.cache)

    sink = RecordingEventSink()
    agent = PushAgent.from_config(config, sink=sink)
    agent.start()
    try:
        agent.submit(BuildEvent(args.derivation, frozenset(args.paths)))
        agent.drain()
    finally:
        agent.shutdown()

    print_summary(agent.stats)
    failed = [e for e in sink.events if e.kind in FAILURE_KINDS]
    return 1 if failed else 0
