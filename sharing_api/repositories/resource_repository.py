"""Repository for the shareable resource registry."""

from typing import Optional

from sqlalchemy.orm import Session

from ..exceptions import ResourceNotFoundError
from ..models.resource import SharedResource


class ResourceRepository:
    """Data access layer for registered resources (composite key, so no BaseRepository)."""

    def __init__(self, db: Session):
        self.db = db

    def get_optional(self, resource_type: str, resource_id: str) -> Optional[SharedResource]:
        return self.db.get(SharedResource, (resource_type, resource_id))

    def get(self, resource_type: str, resource_id: str) -> SharedResource:
        resource = self.get_optional(resource_type, resource_id)
        if resource is None:
            raise ResourceNotFoundError(resource_type, resource_id)
        return resource

    def create(
        self, resource_type: str, resource_id: str, owner_id: str, title: Optional[str] = None
    ) -> SharedResource:
        resource = SharedResource(
            resource_type=resource_type,
            resource_id=resource_id,
            owner_id=owner_id,
            title=title,
        )
        self.db.add(resource)
        self.db.flush()
        return resource
