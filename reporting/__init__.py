"""User-facing notification text."""
