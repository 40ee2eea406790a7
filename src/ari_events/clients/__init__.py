"""Transport clients."""
