"""Persistence for the engine state."""
