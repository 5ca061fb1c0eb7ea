"""Port scanning building blocks: results and output, routing lookup, ICMP probes and checkpoints."""

__version__ = "0.1.0"