"""Chat transport adapters that feed the dispatch engine."""
