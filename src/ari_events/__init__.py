"""
ARI Event Stream - resilient Asterisk ARI event consumer.

This package keeps a WebSocket subscription to the Asterisk REST Interface
``/events`` endpoint alive indefinitely and routes decoded events to
application handlers.
"""

__version__ = "1.0.0"
__author__ = "ARI Event Stream Team"
