"""Voice interaction engine: per-question phase machine, prompts and signals."""
