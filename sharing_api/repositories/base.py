"""Shared lookups for the sharing repositories.

Grants, invites and links are all addressed by a string primary key, and
invites and links additionally by their secret token. Subclasses set
``model_class`` and build their own not-found error in ``_not_found``.
"""

from typing import Generic, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..database import Base
from ..exceptions import NotFoundError

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):

    model_class: Type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    @property
    def dialect(self) -> str:
        """Name of the bound database dialect ("sqlite", "postgresql")."""
        return self.db.get_bind().dialect.name

    def _not_found(self, key: Optional[str]) -> NotFoundError:
        raise NotImplementedError

    def get_by_id_optional(self, entity_id: str) -> Optional[ModelT]:
        # Guarded writes go through core UPDATEs, so always reload the row.
        return self.db.get(self.model_class, entity_id, populate_existing=True)

    def get_by_id(self, entity_id: str) -> ModelT:
        entity = self.get_by_id_optional(entity_id)
        if entity is None:
            raise self._not_found(entity_id)
        return entity

    def get_by_token(self, token: str) -> ModelT:
        """Look up an invite or link by its secret token.

        The token never appears in the raised error.
        """
        entity = self.db.scalar(select(self.model_class).where(self.model_class.token == token))
        if entity is None:
            raise self._not_found(None)
        return entity
