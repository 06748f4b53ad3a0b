"""Single-writer wake loop: market phase, persisted agent state, phase controller."""
