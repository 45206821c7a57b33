"""
Entry point for running pushagent as a module.

Usage: python -m pushagent [command] [options]
"""

from pushagent.cli.parser import main

if __name__ == "__main__":
    main()
