"""Statistical edge scoring over the cached signal set."""
