from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from library_app import models
from library_app import schemas
from library_app.database import transaction
from library_app.exceptions import ConflictError, NotFoundError, ValidationError
from library_app.logging_config import get_logger
from library_app.repositories.books import BookRepository
from library_app.repositories.copies import CopyRepository
from library_app.repositories.rentals import RentalRepository


logger = get_logger("books")


class BookService:
    """Catalogue operations: books, their genres and their physical copies."""

    def __init__(self, db: Session):
        self.db = db
        self.books = BookRepository(db)
        self.copies = CopyRepository(db)
        self.rentals = RentalRepository(db)

    def list_books(self, skip: int = 0, limit: int = 100) -> List[models.Book]:
        return self.books.list_books(skip=skip, limit=limit)

    def get_book(self, isbn: str) -> models.Book:
        book = self.books.find_by_isbn(isbn)
        if book is None:
            raise NotFoundError("Book", isbn)
        return book

    def get_book_by_title(self, title: str) -> models.Book:
        book = self.books.find_by_title(title)
        if book is None:
            raise NotFoundError("Book", title, message=f"Book with title '{title}' not found")
        return book

    def get_book_details(self, isbn: str) -> schemas.BookDetails:
        """
        A book together with its full rental history.

        ``currently_borrowed`` is True while any copy has an open rental.
        """
        book = self.get_book(isbn)
        history = self.rentals.find_rental_history_for_book(isbn)
        return schemas.BookDetails.model_validate(
            {
                "book": book,
                "rental_history": history,
                "currently_borrowed": any(not rental.returned for rental in history),
                "total_rentals": len(history),
            },
            from_attributes=True,
        )

    def search_books(self, term: str) -> List[models.Book]:
        term = (term or "").strip()
        if not term:
            raise ValidationError("Search term cannot be empty", field="q")
        return self.books.search_books(term)

    def add_book(self, data: schemas.BookCreate) -> models.Book:
        """
        Add a book with its genres and initial copies as one unit.

        Raises:
            ConflictError: a book with this ISBN already exists
        """
        fields = data.model_dump(exclude={"genres", "initial_copies"})
        with transaction(self.db):
            if self.books.find_by_isbn(data.isbn) is not None:
                raise ConflictError(f"Book with ISBN {data.isbn} already exists", field="isbn")
            try:
                book = self.books.create_book(fields)
            except IntegrityError as exc:
                raise ConflictError(
                    f"Book with ISBN {data.isbn} already exists", field="isbn"
                ) from exc
            self.books.set_genres(book, data.genres)
            for _ in range(data.initial_copies):
                self.copies.create_copy(book.isbn)

        logger.info("Added book %s with %s copies", data.isbn, data.initial_copies)
        return self.get_book(data.isbn)

    def edit_book(self, isbn: str, data: schemas.BookUpdate) -> models.Book:
        """
        Partial update. Genres are replaced only when given.
        """
        update_data = data.model_dump(exclude_unset=True)
        genres = update_data.pop("genres", None)

        with transaction(self.db):
            book = self.get_book(isbn)
            # None is "not provided" for the non-null columns
            fields = {key: value for key, value in update_data.items() if value is not None}
            self.books.update_book(book, fields)
            if genres is not None:
                self.books.set_genres(book, genres)
                self.books.remove_orphan_genres()

        return self.get_book(isbn)

    def delete_book(self, isbn: str) -> None:
        """
        Delete a book and its copies.

        Raises:
            NotFoundError: unknown ISBN
            ConflictError: any copy has rental history
        """
        with transaction(self.db):
            book = self.get_book(isbn)
            if self.rentals.has_history_for_book(isbn):
                raise ConflictError(
                    f"Book {isbn} has rental history and cannot be deleted", field="isbn"
                )
            self.books.delete_book(book)
            removed = self.books.remove_orphan_genres()

        logger.info("Deleted book %s (%s orphaned genres removed)", isbn, removed)

    def list_genres(self) -> List[models.Genre]:
        return self.books.list_genres()

    def list_copies(self, isbn: str) -> List[models.Copy]:
        self.get_book(isbn)
        return self.copies.list_copies_for_book(isbn)

    def get_copy(self, copy_id: int) -> models.Copy:
        copy = self.copies.get_copy_with_book(copy_id)
        if copy is None:
            raise NotFoundError("Copy", copy_id)
        return copy

    def add_copy(self, isbn: str) -> models.Copy:
        with transaction(self.db):
            self.get_book(isbn)
            copy = self.copies.create_copy(isbn)

        logger.info("Added copy %s of book %s", copy.id, isbn)
        return copy

    def delete_copy(self, copy_id: int) -> None:
        with transaction(self.db):
            self.copies.delete_copy(copy_id)

        logger.info("Deleted copy %s", copy_id)

    def rented_copies(self) -> List[models.Copy]:
        return self.copies.list_rented_copies()
