"""FastAPI control server for a voice survey session."""
