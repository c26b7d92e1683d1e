"""FieldSync Core: shared datastore service for field task coordination."""
