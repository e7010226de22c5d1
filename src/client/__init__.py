"""Client-side bookmark list: HTTP API client and optimistic view-model."""
