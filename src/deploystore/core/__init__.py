"""Core primitives: errors, settings, logging, schema, events, session and caches."""
