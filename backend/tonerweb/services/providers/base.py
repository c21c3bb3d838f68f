"""
Common interface for upstream AI providers.

The orchestrator only knows this interface: one input in, one text out.
Provider-specific failures surface as exceptions and are normalized by
``tonerweb.core.errors.classify_error``.
"""
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class Provider(Protocol):
    name: str
    model: str

    async def call(self, input: str, system_prompt: Optional[str] = None) -> str:
        ...
