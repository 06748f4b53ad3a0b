"""Mention scoring and per-symbol signal aggregation."""
