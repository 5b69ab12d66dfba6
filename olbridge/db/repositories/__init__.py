"""Repository modules; each call opens and commits its own session."""
