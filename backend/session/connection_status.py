"""
Connection status tracking for transport endpoints.

Connection lifecycle is tracked separately from the session state machine:
connection_status: DOWN | CONNECTING | UP

Owned by the server-side ConnectionGateway and by the client transport,
never by a session record.
"""
from enum import Enum

class ConnectionStatus(str, Enum):
    """
    Transport connection lifecycle.

    Independent of SessionState: a session may be CLOSING while the
    connection is still UP, and a dropped connection (DOWN) tears its
    sessions down.
    """
    DOWN = "DOWN"              # Not connected
    CONNECTING = "CONNECTING"  # Handshake in progress
    UP = "UP"                  # Active WebSocket connection
