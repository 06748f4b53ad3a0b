"""Position lifecycle: sizing, entries, exits, staleness and options contracts."""
