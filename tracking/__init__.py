"""Usage, session and override tracking."""
