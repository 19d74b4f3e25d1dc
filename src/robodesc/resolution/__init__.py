"""Reference path resolution and dependency scanning."""
