"""ResourceManager protocol — the contract every test resource manager meets."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pipeline_it.resources.handle import BackingState


@runtime_checkable
class ResourceManager(Protocol):
    """Owns the lifecycle of one externally-backed test resource group."""

    @property
    def namespace(self) -> str:
        """Name under which this manager creates its sub-resources."""
        ...

    @property
    def state(self) -> BackingState:
        """Current state of the backing process."""
        ...

    def get_connection_info(self) -> str:
        """Connection string for the running backend."""
        ...

    def cleanup(self) -> None:
        """Tear everything down; safe to call more than once."""
        ...
