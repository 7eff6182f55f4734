"""Domain modules: templates and uploads."""
