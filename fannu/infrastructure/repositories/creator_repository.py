# fannu/infrastructure/repositories/creator_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from fannu.infrastructure.db.models import Creator


class CreatorRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, creator_id: str) -> Creator | None:
        stmt = select(Creator).where(Creator.id == creator_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_slug(self, slug: str) -> Creator | None:
        stmt = select(Creator).where(Creator.slug == slug)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_or_update(self, slug: str, **fields) -> Creator:
        creator = self.get_by_slug(slug)

        if creator:
            for key, value in fields.items():
                setattr(creator, key, value)
            return creator

        creator = Creator(slug=slug, **fields)
        self.db.add(creator)
        self.db.flush()
        return creator
