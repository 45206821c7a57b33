"""
pushagent - push build outputs to remote binary caches.

Receives post-build events from the build tool, filters out source and
temporary outputs, and uploads the rest to the configured caches with
retry, backpressure and dead-lettering.
"""

__version__ = "0.1.0"
