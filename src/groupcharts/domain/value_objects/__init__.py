"""Value objects: entry identity and week windows."""
