"""
Rental lifecycle: moving copies between AVAILABLE and BORROWED.

    AVAILABLE --rent(member)--> BORROWED --return()--> AVAILABLE

Every transition writes two rows (the rental and the copy flag) and does
so inside one transaction. The copy flag is flipped with a conditional
UPDATE, so the availability that decides the outcome is always read by
the same statement that changes it.
"""
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from library_app import models
from library_app import schemas
from library_app.config import get_settings
from library_app.database import storage_errors, transaction
from library_app.exceptions import (
    LibraryError,
    NotFoundError,
    RentalLimitExceededError,
    StorageError,
    UnavailableError,
)
from library_app.logging_config import get_logger
from library_app.repositories.books import BookRepository
from library_app.repositories.copies import CopyRepository
from library_app.repositories.members import MemberRepository
from library_app.repositories.rentals import RentalRepository


logger = get_logger("rentals")


class RentalService:
    """
    The only place where rental rules are enforced.

    - a member holds at most ``rental_limit`` open rentals
    - a copy is referenced by at most one open rental
    - renting by book picks the available copy with the lowest id
    """

    def __init__(self, db: Session, rental_limit: Optional[int] = None):
        self.db = db
        if rental_limit is None:
            rental_limit = get_settings().rental_limit
        self.rental_limit = rental_limit
        self.books = BookRepository(db)
        self.copies = CopyRepository(db)
        self.members = MemberRepository(db)
        self.rentals = RentalRepository(db)

    @contextmanager
    def _audited(self, action: str, member_id: int, target) -> Iterator[None]:
        try:
            yield
        except StorageError:
            # already logged with its traceback by storage_errors()
            raise
        except LibraryError as exc:
            logger.warning(
                "%s rejected for member %s on %s: %s", action, member_id, target, exc.message
            )
            raise

    def _require_member(self, member_id: int) -> models.Member:
        member = self.members.lock_member(member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        return member

    def _open_rental(self, member_id: int, copy_id: int) -> models.Rental:
        """
        Second half of a rent, run after the copy has been claimed.

        The open-rental count is taken inside the same write transaction as
        the claim, so two rents by one member cannot both slip under the
        limit.
        """
        if self.rentals.count_open_rentals_for_member(member_id) >= self.rental_limit:
            raise RentalLimitExceededError(member_id, self.rental_limit)
        try:
            return self.rentals.create_rental(member_id, copy_id)
        except IntegrityError as exc:
            # one-open-rental-per-copy index
            raise UnavailableError(
                f"Copy {copy_id} is already rented", copy_id=copy_id
            ) from exc

    def rent_copy(self, member_id: int, copy_id: int) -> models.Rental:
        """
        Rent a specific copy.

        Raises:
            NotFoundError: member or copy does not exist
            UnavailableError: the copy is borrowed
            RentalLimitExceededError: the member is at the limit
        """
        with self._audited("Rent", member_id, f"copy {copy_id}"):
            with transaction(self.db):
                self._require_member(member_id)
                if self.copies.get_copy(copy_id) is None:
                    raise NotFoundError("Copy", copy_id)
                if not self.copies.claim_copy(copy_id):
                    raise UnavailableError(
                        f"Copy {copy_id} is not available", copy_id=copy_id
                    )
                rental = self._open_rental(member_id, copy_id)

        logger.info("Member %s rented copy %s (rental %s)", member_id, copy_id, rental.id)
        return rental

    def rent_book(self, member_id: int, isbn: str) -> models.Rental:
        """
        Rent the available copy of a book with the lowest copy id.

        A copy taken by a concurrent rent between listing and claiming is
        skipped in favour of the next one.
        """
        with self._audited("Rent", member_id, f"book {isbn}"):
            with transaction(self.db):
                self._require_member(member_id)
                if self.books.find_by_isbn(isbn) is None:
                    raise NotFoundError("Book", isbn)

                for copy in self.copies.list_available_copies_for_book(isbn):
                    if self.copies.claim_copy(copy.id):
                        rental = self._open_rental(member_id, copy.id)
                        break
                else:
                    raise UnavailableError(
                        f"No copies of book {isbn} are available for rent", isbn=isbn
                    )

        logger.info(
            "Member %s rented copy %s of %s (rental %s)",
            member_id,
            rental.copy_id,
            isbn,
            rental.id,
        )
        return rental

    def rent_by_title(self, member_id: int, title: str) -> models.Rental:
        with storage_errors(self.db):
            book = self.books.find_by_title(title)
        if book is None:
            logger.warning("Rent rejected for member %s: no book titled %r", member_id, title)
            raise NotFoundError("Book", title, message=f"Book with title '{title}' not found")
        return self.rent_book(member_id, book.isbn)

    def rent(self, member_id: int, request: schemas.RentRequest) -> models.Rental:
        if request.copy_id is not None:
            return self.rent_copy(member_id, request.copy_id)
        if request.isbn is not None:
            return self.rent_book(member_id, request.isbn)
        return self.rent_by_title(member_id, request.title)

    def return_copy(self, member_id: int, copy_id: int) -> models.Rental:
        """
        Close the member's open rental of a copy and make the copy available.

        Returning something the member does not hold, including a second
        return of the same rental, raises NotFoundError and writes nothing.
        """
        with self._audited("Return", member_id, f"copy {copy_id}"):
            with transaction(self.db):
                rental = self.rentals.find_open_rental(member_id, copy_id)
                if rental is None:
                    raise NotFoundError(
                        "Rental",
                        copy_id,
                        message=f"Member {member_id} has no open rental for copy {copy_id}",
                    )
                closed = self.rentals.close_rental(rental.id)
                self.copies.set_availability(copy_id, True)

        logger.info("Member %s returned copy %s (rental %s)", member_id, copy_id, closed.id)
        return closed

    def return_book(self, member_id: int, isbn: str) -> models.Rental:
        with storage_errors(self.db):
            rental = self.rentals.find_open_rental_for_book(member_id, isbn)
        if rental is None:
            logger.warning("Return rejected for member %s: no open rental of %s", member_id, isbn)
            raise NotFoundError(
                "Rental",
                isbn,
                message=f"Member {member_id} has no open rental for book {isbn}",
            )
        return self.return_copy(member_id, rental.copy_id)

    def return_rental(self, member_id: int, request: schemas.ReturnRequest) -> models.Rental:
        if request.copy_id is not None:
            return self.return_copy(member_id, request.copy_id)
        return self.return_book(member_id, request.isbn)

    def open_rentals(self, member_id: int) -> List[models.Rental]:
        with storage_errors(self.db):
            if self.members.find_by_id(member_id) is None:
                raise NotFoundError("Member", member_id)
            return self.rentals.find_open_rentals_for_member(member_id)

    def available_copies(self, isbn: str) -> List[models.Copy]:
        with storage_errors(self.db):
            if self.books.find_by_isbn(isbn) is None:
                raise NotFoundError("Book", isbn)
            return self.copies.list_available_copies_for_book(isbn)

    def list_rentals(
        self, active_only: bool = False, skip: int = 0, limit: int = 100
    ) -> List[models.Rental]:
        with storage_errors(self.db):
            return self.rentals.list_rentals(active_only=active_only, skip=skip, limit=limit)
