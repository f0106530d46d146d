"""Home presence detection."""
