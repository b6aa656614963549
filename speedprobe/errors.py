"""Exception types shared by the server and the client."""

from __future__ import annotations


class SpeedProbeError(Exception):
    pass


class TransportError(SpeedProbeError, ConnectionError):
    """Connection refused, timeout, disconnect or a non-success HTTP status."""


class ProtocolError(SpeedProbeError, ValueError):
    """The peer answered, but not with something we can use."""


class ZeroBytesError(ProtocolError):
    pass


class SignalingError(ProtocolError):
    pass


class InvalidOfferError(SignalingError):
    pass


class StoreError(SpeedProbeError):
    pass


class ResultNotFoundError(StoreError, KeyError):
    def __init__(self, result_id: str):
        super().__init__(result_id)
        self.result_id = result_id

    def __str__(self) -> str:
        return f"Result {self.result_id} not found"


class RunInProgressError(SpeedProbeError):
    pass
