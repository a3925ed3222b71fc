from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from library_app import models
from library_app.exceptions import ConflictError, NotFoundError


class CopyRepository:
    """
    Row-level access to physical copies and their availability flag.

    Methods flush but never commit: the caller owns the transaction so that
    a copy flip and its rental row land together.
    """

    def __init__(self, db: Session):
        self.db = db

    def list_copies_for_book(self, isbn: str) -> List[models.Copy]:
        return (
            self.db.query(models.Copy)
            .filter(models.Copy.book_isbn == isbn)
            .order_by(models.Copy.id)
            .all()
        )

    def list_available_copies_for_book(self, isbn: str) -> List[models.Copy]:
        """Available copies, lowest copy id first."""
        return (
            self.db.query(models.Copy)
            .filter(models.Copy.book_isbn == isbn, models.Copy.available.is_(True))
            .order_by(models.Copy.id)
            .all()
        )

    def get_copy(self, copy_id: int) -> Optional[models.Copy]:
        return self.db.query(models.Copy).filter(models.Copy.id == copy_id).first()

    def get_copy_with_book(self, copy_id: int) -> Optional[models.Copy]:
        return (
            self.db.query(models.Copy)
            .options(joinedload(models.Copy.book))
            .filter(models.Copy.id == copy_id)
            .first()
        )

    def set_availability(self, copy_id: int, available: bool) -> None:
        """
        Set the flag on a single copy.

        Only the flag changes; opening or closing the matching rental is
        the lifecycle service's job.

        Raises:
            NotFoundError: if no copy has this id
        """
        updated = (
            self.db.query(models.Copy)
            .filter(models.Copy.id == copy_id)
            .update({models.Copy.available: available}, synchronize_session="evaluate")
        )
        if updated == 0:
            raise NotFoundError("Copy", copy_id)

    def claim_copy(self, copy_id: int) -> bool:
        """
        Flip a copy from available to borrowed if, and only if, it is
        still available.

        The check and the write are one UPDATE statement, so of two
        concurrent callers at most one gets True.
        """
        updated = (
            self.db.query(models.Copy)
            .filter(models.Copy.id == copy_id, models.Copy.available.is_(True))
            .update({models.Copy.available: False}, synchronize_session="evaluate")
        )
        return updated == 1

    def create_copy(self, isbn: str, available: bool = True) -> models.Copy:
        copy = models.Copy(book_isbn=isbn, available=available)
        self.db.add(copy)
        self.db.flush()
        return copy

    def delete_copy(self, copy_id: int) -> None:
        """
        Raises:
            NotFoundError: if no copy has this id
            ConflictError: if any rental, open or closed, references it
        """
        copy = self.get_copy(copy_id)
        if copy is None:
            raise NotFoundError("Copy", copy_id)

        has_history = (
            self.db.query(models.Rental.id)
            .filter(models.Rental.copy_id == copy_id)
            .first()
            is not None
        )
        if has_history:
            raise ConflictError(
                f"Copy {copy_id} has rental history and cannot be deleted",
                field="copy_id",
            )

        self.db.delete(copy)
        self.db.flush()

    def list_rented_copies(self) -> List[models.Copy]:
        return (
            self.db.query(models.Copy)
            .join(models.Book)
            .options(joinedload(models.Copy.book))
            .filter(models.Copy.available.is_(False))
            .order_by(models.Book.title, models.Copy.id)
            .all()
        )

    def count_copies(self, available_only: bool = False) -> int:
        query = self.db.query(func.count(models.Copy.id))
        if available_only:
            query = query.filter(models.Copy.available.is_(True))
        return query.scalar() or 0
