"""Domain models for notegraph."""
