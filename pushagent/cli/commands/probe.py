"""
Probe command: check each cache target is reachable with its token.
"""

import logging

from pushagent.caching import HttpCacheClient, TokenRefCredentialProvider
from pushagent.cli.utils import load_agent_config, print_error, restrict_targets
from pushagent.core.exceptions import CacheClientError, UnauthorizedError

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the probe command.

    Args:
        args: Parsed command-line arguments

    Returns:
        0 if every probed cache answered, 1 otherwise
    """
    config = restrict_targets(load_agent_config(args), args.cache)
    credentials = TokenRefCredentialProvider(config.caches)
    client = HttpCacheClient(config.caches, timeout=config.timeout)

    failures = 0
    try:
        for target in config.push_targets:
            token = credentials.get_token(target.name)
            if token is None:
                print_error(f"{target.name}: no token available ({target.token_ref})")
                failures += 1
                continue
            try:
                info = client.probe(target.name, token)
                print(f"[OK] {info}")
            except UnauthorizedError as e:
                print_error(f"{target.name}: reachable, token rejected", str(e))
                failures += 1
            except CacheClientError as e:
                print_error(f"{target.name}: unreachable", str(e))
                failures += 1
            finally:
                token.wipe()
    finally:
        client.close()

    return 1 if failures else 0
