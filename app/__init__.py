"""FastAPI backend for multi-provider competitor analysis."""
