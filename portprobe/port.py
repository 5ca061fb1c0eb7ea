"""A port together with the protocol it is reached over."""

from dataclasses import dataclass

from portprobe.protocol import Protocol


@dataclass(frozen=True)
class Port:
    """A network port; its string form is used as a unique key."""

    port: int
    protocol: Protocol = Protocol.TCP
    tls: bool = False

    def __str__(self) -> str:
        tls = "true" if self.tls else "false"
        return f"{self.port}-{int(self.protocol)}-{tls}"