"""HTTP API for price collaborators."""
