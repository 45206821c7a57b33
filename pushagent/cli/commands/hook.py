"""
Post-build hook command.

The build tool runs this after every successful build with ``DRV_PATH`` and
``OUT_PATHS`` set. It records the build in the spool directory for the running
agent and returns immediately. It exits 0 in every case: a cache problem must
never fail a build.
"""

import logging

from pushagent.agent.events import BuildEvent, SpoolDirectory
from pushagent.cli.utils import load_agent_config

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the hook command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Always 0
    """
    try:
        event = BuildEvent.from_hook_environment()
        logger.info("Post-build hook triggered with:")
        logger.info(f"  DRV_PATH: {event.derivation_id}")
        logger.info(f"  OUT_PATHS: {' '.join(sorted(event.output_paths))}")

        if not event.output_paths:
            return 0

        spool_dir = args.spool_dir
        if spool_dir is None:
            spool_dir = load_agent_config(args).spool_dir

        SpoolDirectory(spool_dir).submit(event)
        logger.info(f"Queued {len(event.output_paths)} paths for upload")
    except Exception as e:
        logger.error(f"Post-build hook failed (non-fatal): {e}")

    return 0
