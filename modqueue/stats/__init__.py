"""Read-only operational counters over the item population."""
