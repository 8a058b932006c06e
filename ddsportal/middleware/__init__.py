"""HTTP middleware and logging utilities."""
