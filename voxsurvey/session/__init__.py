"""Survey session: answer bookkeeping, navigation and persistence."""
