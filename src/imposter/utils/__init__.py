"""Randomness and timer seams."""
