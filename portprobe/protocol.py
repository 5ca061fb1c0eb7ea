"""Transport protocols a port can be probed with."""

from enum import IntEnum


class Protocol(IntEnum):
    """Protocol of a probed port."""

    TCP = 0
    UDP = 1
    ARP = 2

    def __str__(self) -> str:
        return self.name.lower()