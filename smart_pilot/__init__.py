"""Smart pilot: latency monitoring and tiered failover for a local proxy engine."""

__version__ = "1.0.0"
