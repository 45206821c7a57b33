"""
pushagent CLI argument parser.

This module implements the command-line interface for pushagent using argparse.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pushagent.core.exceptions import AgentLockError, ConfigurationError

# Get version from package
try:
    from importlib.metadata import version

    __version__ = version("pushagent")
except Exception:
    __version__ = "0.1.0"

logger = logging.getLogger(__name__)

EXIT_CONFIGURATION_ERROR = 2


class CLI:
    """pushagent command-line interface."""

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="pushagent",
            description="pushagent - push build outputs to remote binary caches",
            epilog='Use "pushagent COMMAND --help" for command-specific help',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        # Global options
        parser.add_argument(
            "--version", action="version", version=f"pushagent {__version__}"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Enable minimal output (errors only)",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Path to configuration file (default: ./pushagent.yaml)",
        )
        parser.add_argument(
            "--state-dir",
            type=Path,
            metavar="PATH",
            help="Override the configured state directory",
        )

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command", help="Available commands", metavar="COMMAND"
        )

        self._add_run_command(subparsers)
        self._add_hook_command(subparsers)
        self._add_push_command(subparsers)
        self._add_replay_command(subparsers)
        self._add_probe_command(subparsers)

        return parser

    def _add_run_command(self, subparsers):
        """Add 'run' subcommand."""
        parser = subparsers.add_parser(
            "run",
            help="Run the push agent",
            description="Watch the spool directory and upload build outputs "
            "until interrupted",
        )
        parser.add_argument(
            "--once",
            action="store_true",
            help="Process the events currently spooled, wait for uploads, then exit",
        )

    def _add_hook_command(self, subparsers):
        """Add 'hook' subcommand."""
        parser = subparsers.add_parser(
            "hook",
            help="Post-build hook entry point",
            description="Record a finished build (DRV_PATH/OUT_PATHS from the "
            "environment) for the running agent. Always exits 0.",
        )
        parser.add_argument(
            "--spool-dir",
            type=Path,
            metavar="DIR",
            help="Spool directory (default: <state_dir>/spool from configuration)",
        )

    def _add_push_command(self, subparsers):
        """Add 'push' subcommand."""
        parser = subparsers.add_parser(
            "push",
            help="Push store paths now",
            description="Upload the given store paths and wait for the result",
        )
        parser.add_argument("paths", nargs="+", metavar="PATH", help="Store paths")
        parser.add_argument(
            "--derivation",
            default="",
            metavar="DRV",
            help="Derivation that produced the paths (used by the filter)",
        )
        parser.add_argument(
            "--cache",
            action="append",
            metavar="NAME",
            help="Push only to this cache (repeatable; default: push_to targets)",
        )

    def _add_replay_command(self, subparsers):
        """Add 'replay' subcommand."""
        parser = subparsers.add_parser(
            "replay",
            help="Inspect or retry dead-lettered uploads",
            description="List dead-lettered jobs or push them again",
        )
        parser.add_argument(
            "--list", action="store_true", help="List records without replaying"
        )
        parser.add_argument(
            "--reason",
            action="append",
            metavar="REASON",
            help="Only records with this reason (repeatable)",
        )

    def _add_probe_command(self, subparsers):
        """Add 'probe' subcommand."""
        parser = subparsers.add_parser(
            "probe",
            help="Check connectivity to the configured caches",
            description="Probe each cache target with its token and report reachability",
        )
        parser.add_argument(
            "--cache",
            action="append",
            metavar="NAME",
            help="Probe only this cache (repeatable)",
        )

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse command-line arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with given arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code (0 for success, 2 for configuration errors,
            1 for other errors)
        """
        parsed_args = self.parse_args(args)

        # Configure logging
        self._configure_logging(parsed_args)

        # Check if command specified
        if not parsed_args.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130  # Standard exit code for SIGINT
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except AgentLockError as e:
            logger.error(str(e))
            return 1
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return 1

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(asctime)s %(levelname)s %(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            stream=sys.stderr,
            force=True,  # Reconfigure if already configured
        )

    def _dispatch_command(self, args) -> int:
        """
        Dispatch to appropriate command handler.

        Args:
            args: Parsed arguments with command field

        Returns:
            Exit code from command handler
        """
        command_map = {
            "run": "pushagent.cli.commands.run",
            "hook": "pushagent.cli.commands.hook",
            "push": "pushagent.cli.commands.push",
            "replay": "pushagent.cli.commands.replay",
            "probe": "pushagent.cli.commands.probe",
        }

        module_name = command_map.get(args.command)
        if not module_name:
            logger.error(f"Unknown command: {args.command}")
            return 1

        try:
            # Dynamic import of command module
            import importlib

            module = importlib.import_module(module_name)
        except ImportError as e:
            logger.error(f"Failed to load command module: {e}")
            if args.verbose:
                import traceback

                traceback.print_exc()
            return 1

        if not hasattr(module, "run"):
            logger.error(f"Command module {module_name} has no run() function")
            return 1

        return module.run(args)


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
