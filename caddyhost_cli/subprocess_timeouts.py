"""
Timeouts for the short OS helper commands caddyhost runs.

The Caddy engine itself is never bounded: the smoke test and the supervised
reverse proxy wait on their output streams. Everything else (DNS flush, port
lookup, port kill) goes through these values.
"""

# Timeout constants (in seconds)

# Short operations (< 5 seconds)
TIMEOUT_QUICK = 5
"""Quick operations: process lookups, kill signals."""

# Standard operations (< 30 seconds)
TIMEOUT_STANDARD = 30
"""Standard operations: DNS flush (may wait on a sudo prompt)."""

# Interactive operations (no timeout)
TIMEOUT_NONE = None
"""Interactive operations: waiting for the supervised engine to become ready."""


TIMEOUTS = {
    # DNS cache
    "dns_flush": TIMEOUT_STANDARD,
    # Port guard
    "port_owner": TIMEOUT_QUICK,
    "port_kill": TIMEOUT_STANDARD,
    # Engine
    "engine_stop": TIMEOUT_QUICK,
    "engine": TIMEOUT_NONE,
}


def get_timeout(operation: str, default: int = TIMEOUT_STANDARD) -> int | None:
    """
    Get the timeout for a named operation.

    Examples:
        >>> get_timeout("port_owner")
        5
        >>> get_timeout("engine")
        None
        >>> get_timeout("unknown_operation")
        30
    """
    return TIMEOUTS.get(operation, default)
