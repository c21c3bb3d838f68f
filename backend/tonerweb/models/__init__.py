"""Pydantic models for the HTTP API."""

from .chat import ChatRequest, ChatResponse, ErrorEnvelope

__all__ = ["ChatRequest", "ChatResponse", "ErrorEnvelope"]
