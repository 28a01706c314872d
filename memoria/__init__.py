"""Memory module of an operating-system simulator: partitions, thread contexts and a TCP service."""

__version__ = "0.1.0"