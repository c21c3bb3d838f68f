"""TonerWeb AI assistant backend."""
