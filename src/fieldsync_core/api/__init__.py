"""HTTP API for FieldSync Core."""
