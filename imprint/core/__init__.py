"""Core infrastructure: config, logging, errors, metrics, database, storage."""
