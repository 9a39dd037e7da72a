"""Short video module: data model, state machine, ingestion and API."""
