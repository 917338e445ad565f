"""Deterministic stand-ins for time, timers, transports and the catalog."""
