"""Speech I/O: capability-selected providers that speak and listen."""
