from __future__ import annotations


class TransferError(Exception):
    pass


class EndpointError(TransferError):
    """bind/listen/accept/connect failed."""


class StreamError(TransferError):
    """send/recv failed or the peer closed mid-frame."""


class ProtocolError(TransferError):
    pass


class FrameTooLargeError(ProtocolError):
    def __init__(self, length: int, limit: int):
        super().__init__(f"frame too large: {length} > {limit}")
        self.length = length
        self.limit = limit


class ResourceError(TransferError):
    pass
