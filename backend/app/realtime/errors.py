"""Errors raised inside the real-time subsystem.

None of these are fatal to the process. The worst outcome is a single
connection being dropped.
"""


class DeliveryFailure(Exception):
    """An event could not be handed to one connection.

    Raised by ``Connection.send`` when the connection is closed or its outbox
    is full. The broadcaster logs it and moves on to the next recipient; the
    event is treated as never delivered and is not retried.
    """

    def __init__(self, connection_id: str, reason: str) -> None:
        super().__init__(f"delivery to {connection_id} failed: {reason}")
        self.connection_id = connection_id
        self.reason = reason
