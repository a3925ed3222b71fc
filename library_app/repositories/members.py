from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from library_app import models
from library_app.repositories.patterns import LIKE_ESCAPE, contains_pattern


class MemberRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_members(self, skip: int = 0, limit: int = 100) -> List[models.Member]:
        return (
            self.db.query(models.Member)
            .order_by(models.Member.id)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def find_by_id(self, member_id: int) -> Optional[models.Member]:
        return self.db.query(models.Member).filter(models.Member.id == member_id).first()

    def find_by_email(self, email: str) -> Optional[models.Member]:
        return (
            self.db.query(models.Member)
            .filter(func.lower(models.Member.email) == email.lower())
            .first()
        )

    def find_by_name(self, name: str) -> List[models.Member]:
        """Substring match on first name, surname or "first surname"."""
        pattern = contains_pattern(name)
        full_name = models.Member.first_name + " " + models.Member.surname
        return (
            self.db.query(models.Member)
            .filter(
                or_(
                    models.Member.first_name.ilike(pattern, escape=LIKE_ESCAPE),
                    models.Member.surname.ilike(pattern, escape=LIKE_ESCAPE),
                    full_name.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
            .order_by(models.Member.surname, models.Member.first_name)
            .all()
        )

    def lock_member(self, member_id: int) -> Optional[models.Member]:
        """
        Load a member with a row lock, serializing rent calls for the same
        member on databases that support SELECT ... FOR UPDATE.
        """
        return (
            self.db.query(models.Member)
            .filter(models.Member.id == member_id)
            .with_for_update()
            .first()
        )

    def create_member(self, fields: Dict[str, Any]) -> models.Member:
        member = models.Member(**fields)
        self.db.add(member)
        self.db.flush()
        return member

    def update_member(self, member: models.Member, fields: Dict[str, Any]) -> models.Member:
        for key, value in fields.items():
            setattr(member, key, value)
        self.db.flush()
        return member

    def delete_member(self, member: models.Member) -> None:
        self.db.delete(member)
        self.db.flush()

    def count_members(self) -> int:
        return self.db.query(func.count(models.Member.id)).scalar() or 0
