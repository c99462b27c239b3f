"""Real-time delivery and room membership.

Components:
    - ConnectionRegistry: identity -> connections, connection -> rooms.
    - RoomBroadcaster: fans an event out to every connection in a room.
    - ChatSocketSession: per-connection lifecycle (handshake, inbound events,
      disconnect).

Everything here is in-memory and process-local. Nothing survives a restart;
clients rejoin their rooms after reconnecting.
"""
