"""
Replay command: list or retry dead-lettered uploads.

Replayed jobs start again with zero attempts. Jobs that fail again are
dead-lettered again by the workers.
"""

import dataclasses
import logging
from datetime import datetime

from pushagent.agent import DeadLetterLog, DeadLetterRecord, PushAgent
from pushagent.cli.utils import load_agent_config, print_summary
from pushagent.core.locking import LockManager

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the replay command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    config = load_agent_config(args)
    dead_letters = DeadLetterLog(config.dead_letter_file, LockManager(config.state_dir))
    reasons = set(args.reason or [])

    if args.list:
        records = [r for r in dead_letters.read() if _selected(r, reasons)]
        for record in records:
            when = datetime.fromtimestamp(record.recorded_at).isoformat(
                timespec="seconds"
            )
            print(
                f"{when}  {record.reason:<13} {record.job.cache_name:<12} "
                f"{record.job.store_path}  attempts={record.job.attempts}"
            )
            if record.error:
                print(f"    {record.error}")
        print(f"{len(records)} dead-lettered jobs")
        return 0

    if not any(_selected(r, reasons) for r in dead_letters.read()):
        print("Nothing to replay")
        return 0

    # Start first: if the agent refuses to run, the log is left untouched
    agent = PushAgent.from_config(config)
    try:
        agent.start()
        records = dead_letters.drain()
        handled = 0
        try:
            for record in records:
                _replay_record(agent, config, dead_letters, record, reasons)
                handled += 1
        except Exception:
            remaining = records[handled:]
            logger.error(
                f"Replay interrupted, restoring {len(remaining)} dead-letter records"
            )
            dead_letters.append_records(remaining)
            raise
        agent.drain()
    finally:
        agent.shutdown()

    print_summary(agent.stats)
    return 0


def _selected(record: DeadLetterRecord, reasons) -> bool:
    return not reasons or record.reason in reasons


def _replay_record(agent, config, dead_letters, record: DeadLetterRecord, reasons):
    """Re-queue one drained record, or write it back if it is not replayed."""
    if not _selected(record, reasons):
        dead_letters.append_records([record])
        return

    if config.get_target(record.job.cache_name) is None:
        logger.warning(
            f"Cache {record.job.cache_name} is no longer configured, "
            f"keeping {record.job.store_path} dead-lettered"
        )
        dead_letters.append_records([record])
        return

    agent.enqueue_job(dataclasses.replace(record.job, attempts=0))
