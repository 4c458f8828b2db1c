"""Background jobs: heuristic evaluation and enrichment."""
