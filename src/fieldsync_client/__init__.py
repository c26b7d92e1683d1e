"""FieldSync client: realtime synchronization core for panel clients."""
