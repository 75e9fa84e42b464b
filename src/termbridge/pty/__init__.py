"""PTY layer: the wrapped program, the host terminal and output batching.

The wrapped program runs in its own pseudo-terminal and process group. Its
output is mirrored to the host terminal byte for byte and batched by the
flush scheduler for transcript extraction.
"""

from termbridge.pty.host import HostTerminal
from termbridge.pty.process import PTYProcess, PTYStatus
from termbridge.pty.scheduler import FlushScheduler

__all__ = [
    "FlushScheduler",
    "HostTerminal",
    "PTYProcess",
    "PTYStatus",
]
