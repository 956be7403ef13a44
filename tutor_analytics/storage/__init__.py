"""Storage layer: models, SQLite schema, event store and catalog."""
