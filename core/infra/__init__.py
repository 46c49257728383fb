"""Infrastructure adapters: database, HTTP client, scheduler."""
