"""Error taxonomy and status-API exception handling."""
