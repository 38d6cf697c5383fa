"""Record store, cache manager, matcher and engine."""
