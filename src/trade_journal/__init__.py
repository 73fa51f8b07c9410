"""Trading performance journal: fill normalization, FIFO matching, broker sync, stats."""
