"""Repository contract for versioned prompt configurations.

Configs are never mutated in place: an update is a new version.  At most
one *active default* config exists per document type; ``create`` with
``set_as_default`` and ``activate`` both demote the previous default.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.prompt import CreatePromptConfig, PromptConfig, PromptConfigFilters


# Concrete implementation: SQLitePromptConfigStore (src/providers/storage/)
class IPromptConfigStore(ABC):
    @abstractmethod
    async def initialize(self) -> None: ...

    @abstractmethod
    async def create(self, data: CreatePromptConfig) -> PromptConfig:
        """Insert the next version for ``data.document_type``."""

    @abstractmethod
    async def get(self, config_id: str) -> PromptConfig:
        """Raises :class:`~src.utils.errors.NotFoundError` when missing."""

    @abstractmethod
    async def list(self, filters: PromptConfigFilters | None = None) -> list[PromptConfig]:
        """Return configs ordered by document type then version descending."""

    @abstractmethod
    async def get_default(self, document_type: str) -> PromptConfig | None:
        """Return the active default config for a document type, if any."""

    @abstractmethod
    async def activate(self, config_id: str) -> PromptConfig:
        """Make this version the only active default for its document type."""

    @abstractmethod
    async def deactivate(self, config_id: str) -> None: ...

    @abstractmethod
    async def delete(self, config_id: str) -> None:
        """Delete a config.

        Raises
        ------
        src.utils.errors.ValidationError
            While any chunk still references the config.
        """

    @abstractmethod
    async def count(self) -> int: ...
