"""RTS v2 protocol engine: handshake, encrypted channel and operations."""
