"""Override, merge and cache-invalidation engine components."""
