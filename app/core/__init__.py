"""Core utilities shared across the backend."""
