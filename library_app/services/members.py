from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from library_app import models
from library_app import schemas
from library_app.database import transaction
from library_app.exceptions import ConflictError, NotFoundError, ValidationError
from library_app.logging_config import get_logger
from library_app.repositories.members import MemberRepository
from library_app.repositories.rentals import RentalRepository


logger = get_logger("members")


def _check_member_id(member_id: int) -> None:
    if member_id is None or member_id <= 0:
        raise ValidationError("Invalid member ID", field="id")


class MemberService:
    """
    Member registration and maintenance.

    Field presence and email format are checked by the request schemas;
    this service owns the rules that need the database: unique emails and
    never orphaning rental history.
    """

    def __init__(self, db: Session):
        self.db = db
        self.members = MemberRepository(db)
        self.rentals = RentalRepository(db)

    def list_members(self, skip: int = 0, limit: int = 100) -> List[models.Member]:
        return self.members.list_members(skip=skip, limit=limit)

    def get_member(self, member_id: int) -> models.Member:
        _check_member_id(member_id)
        member = self.members.find_by_id(member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        return member

    def search_members(self, query: str) -> List[models.Member]:
        """
        An all-digit query is a member id; anything else matches names.
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query cannot be empty", field="q")

        if query.isdigit():
            member = self.members.find_by_id(int(query))
            return [member] if member else []
        return self.members.find_by_name(query)

    def create_member(self, data: schemas.MemberCreate) -> models.Member:
        with transaction(self.db):
            if self.members.find_by_email(data.email) is not None:
                raise ConflictError("A member with this email already exists", field="email")
            try:
                member = self.members.create_member(data.model_dump())
            except IntegrityError as exc:
                raise ConflictError(
                    "A member with this email already exists", field="email"
                ) from exc

        logger.info("Registered member %s", member.id)
        return member

    def update_member(self, member_id: int, data: schemas.MemberUpdate) -> models.Member:
        with transaction(self.db):
            member = self.get_member(member_id)

            same_email = self.members.find_by_email(data.email)
            if same_email is not None and same_email.id != member_id:
                raise ConflictError("A member with this email already exists", field="email")

            try:
                self.members.update_member(member, data.model_dump())
            except IntegrityError as exc:
                raise ConflictError(
                    "A member with this email already exists", field="email"
                ) from exc

        return member

    def delete_member(self, member_id: int) -> None:
        """
        Raises:
            NotFoundError: unknown member
            ConflictError: the member has rentals, open or closed
        """
        with transaction(self.db):
            member = self.get_member(member_id)
            if self.rentals.has_history_for_member(member_id):
                raise ConflictError(
                    f"Member {member_id} has rental history and cannot be deleted",
                    field="id",
                )
            self.members.delete_member(member)

        logger.info("Deleted member %s", member_id)
