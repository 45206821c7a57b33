"""
Entry point for running pushagent CLI as a module.

Usage: python -m pushagent.cli [command] [options]
"""

from .parser import main

if __name__ == "__main__":
    main()
