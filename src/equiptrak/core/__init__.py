"""Core primitives: errors, logging, settings, dialects, and database adapters."""
