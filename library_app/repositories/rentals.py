from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from library_app import models
from library_app.exceptions import NotFoundError


def _open():
    return models.Rental.returned.is_(False)


class RentalRepository:
    """
    Creates and closes rental rows and answers rental queries.

    Like the other repositories it never commits. ``create_rental`` and
    ``close_rental`` are meant to run in the same transaction as the
    matching copy flip.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_rental(self, member_id: int, copy_id: int) -> models.Rental:
        """
        Insert an open rental. The caller must already hold the copy.

        The partial unique index on open rentals turns a second open rental
        for the same copy into an IntegrityError at flush time.
        """
        rental = models.Rental(
            member_id=member_id,
            copy_id=copy_id,
            rented_at=datetime.now(),
            returned=False,
        )
        self.db.add(rental)
        self.db.flush()
        return rental

    def close_rental(self, rental_id: int) -> models.Rental:
        """
        Mark an open rental returned and stamp the return time.

        Only a rental that is still open is touched, so closing twice
        fails the second time instead of writing a new timestamp.

        Raises:
            NotFoundError: if no open rental has this id
        """
        updated = (
            self.db.query(models.Rental)
            .filter(models.Rental.id == rental_id, _open())
            .update(
                {models.Rental.returned: True, models.Rental.returned_at: datetime.now()},
                synchronize_session="evaluate",
            )
        )
        if updated == 0:
            raise NotFoundError(
                "Rental", rental_id, message=f"No open rental with id {rental_id}"
            )
        return self.get_rental(rental_id)

    def get_rental(self, rental_id: int) -> Optional[models.Rental]:
        return self.db.query(models.Rental).filter(models.Rental.id == rental_id).first()

    def find_open_rental_for_copy(self, copy_id: int) -> Optional[models.Rental]:
        return (
            self.db.query(models.Rental)
            .filter(models.Rental.copy_id == copy_id, _open())
            .first()
        )

    def find_open_rental(self, member_id: int, copy_id: int) -> Optional[models.Rental]:
        return (
            self.db.query(models.Rental)
            .filter(
                models.Rental.member_id == member_id,
                models.Rental.copy_id == copy_id,
                _open(),
            )
            .first()
        )

    def find_open_rental_for_book(self, member_id: int, isbn: str) -> Optional[models.Rental]:
        """The member's oldest open rental of any copy of the book."""
        return (
            self.db.query(models.Rental)
            .join(models.Copy, models.Rental.copy_id == models.Copy.id)
            .filter(
                models.Rental.member_id == member_id,
                models.Copy.book_isbn == isbn,
                _open(),
            )
            .order_by(models.Rental.id)
            .first()
        )

    def find_open_rentals_for_member(self, member_id: int) -> List[models.Rental]:
        return (
            self.db.query(models.Rental)
            .options(joinedload(models.Rental.book_copy).joinedload(models.Copy.book))
            .filter(models.Rental.member_id == member_id, _open())
            .order_by(models.Rental.rented_at, models.Rental.id)
            .all()
        )

    def count_open_rentals_for_member(self, member_id: int) -> int:
        return (
            self.db.query(func.count(models.Rental.id))
            .filter(models.Rental.member_id == member_id, _open())
            .scalar()
            or 0
        )

    def count_open_rentals(self) -> int:
        return self.db.query(func.count(models.Rental.id)).filter(_open()).scalar() or 0

    def find_rental_history_for_book(self, isbn: str) -> List[models.Rental]:
        """Every rental of every copy of the book, oldest first, with member info."""
        return (
            self.db.query(models.Rental)
            .join(models.Copy, models.Rental.copy_id == models.Copy.id)
            .options(joinedload(models.Rental.member))
            .filter(models.Copy.book_isbn == isbn)
            .order_by(models.Rental.rented_at, models.Rental.id)
            .all()
        )

    def list_rentals(
        self, active_only: bool = False, skip: int = 0, limit: int = 100
    ) -> List[models.Rental]:
        query = self.db.query(models.Rental).options(
            joinedload(models.Rental.member),
            joinedload(models.Rental.book_copy).joinedload(models.Copy.book),
        )
        if active_only:
            query = query.filter(_open())
        return query.order_by(models.Rental.id).offset(skip).limit(limit).all()

    def has_history_for_member(self, member_id: int) -> bool:
        return (
            self.db.query(models.Rental.id)
            .filter(models.Rental.member_id == member_id)
            .first()
            is not None
        )

    def has_history_for_book(self, isbn: str) -> bool:
        return (
            self.db.query(models.Rental.id)
            .join(models.Copy, models.Rental.copy_id == models.Copy.id)
            .filter(models.Copy.book_isbn == isbn)
            .first()
            is not None
        )
