"""Domain services: routing, providers and analytics."""
