"""Chunked reversal transfer (chunkxfer)

A client splits a byte buffer into randomly sized chunks and streams them over a
single TCP connection; the server reverses each chunk and streams it back.

The package keeps the usual layers apart:
- chunk planning vs. length-prefixed framing vs. session state machines
- a readiness-polling dispatcher that can also run one thread per connection
- errors that end a session, never the server
"""

__all__ = []
