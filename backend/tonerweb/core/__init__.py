"""
Core application modules.
Configuration, errors, logging, metrics, tracing, caching and HTTP middleware.
"""
