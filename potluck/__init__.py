"""Potluck, a small recipe sharing site."""
