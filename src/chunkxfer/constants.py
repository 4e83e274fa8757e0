from __future__ import annotations

import struct

COUNT_STRUCT = struct.Struct("!I")  # block_count and frame length, network order
UINT32_MAX = 0xFFFFFFFF

ACK_ACCEPT = "同意".encode("utf-8")
ACK_REJECT = "拒绝".encode("utf-8")
ACK_LEN = len(ACK_ACCEPT)

DEFAULT_MAX_CHUNK = 1024
DEFAULT_RECV_CAPACITY = 4096
DEFAULT_BACKLOG = 5
DEFAULT_MAX_SESSIONS = 10

DEFAULT_SOURCE_FILE = "ascii_file.txt"
