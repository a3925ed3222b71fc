from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from library_app import models
from library_app.repositories.patterns import LIKE_ESCAPE, contains_pattern


# Genres that stay in the table even when no book uses them.
DEFAULT_GENRES = (
    "Fiction",
    "Non-Fiction",
    "Science Fiction",
    "Fantasy",
    "Mystery",
    "Thriller",
    "Romance",
    "Horror",
    "Biography",
    "History",
    "Philosophy",
    "Science",
    "Technology",
    "Self-Help",
    "Business",
    "Health & Fitness",
)


class BookRepository:
    def __init__(self, db: Session):
        self.db = db

    def _with_catalogue(self):
        return self.db.query(models.Book).options(
            selectinload(models.Book.genres),
            selectinload(models.Book.copies),
        )

    def list_books(self, skip: int = 0, limit: int = 100) -> List[models.Book]:
        return (
            self._with_catalogue()
            .order_by(models.Book.title)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def find_by_isbn(self, isbn: str) -> Optional[models.Book]:
        return self._with_catalogue().filter(models.Book.isbn == isbn).first()

    def find_by_title(self, title: str) -> Optional[models.Book]:
        """Exact title match; with duplicate titles the lowest ISBN wins."""
        return (
            self._with_catalogue()
            .filter(models.Book.title == title)
            .order_by(models.Book.isbn)
            .first()
        )

    def search_books(self, term: str) -> List[models.Book]:
        pattern = contains_pattern(term)
        return (
            self._with_catalogue()
            .filter(
                or_(
                    models.Book.title.ilike(pattern, escape=LIKE_ESCAPE),
                    models.Book.author.ilike(pattern, escape=LIKE_ESCAPE),
                    models.Book.isbn.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
            .order_by(models.Book.title)
            .all()
        )

    def create_book(self, fields: Dict[str, Any]) -> models.Book:
        book = models.Book(**fields)
        self.db.add(book)
        self.db.flush()
        return book

    def update_book(self, book: models.Book, fields: Dict[str, Any]) -> models.Book:
        for key, value in fields.items():
            setattr(book, key, value)
        self.db.flush()
        return book

    def delete_book(self, book: models.Book) -> None:
        """Delete a book; its copies and genre links go with it."""
        self.db.delete(book)
        self.db.flush()

    def find_or_create_genre(self, name: str) -> models.Genre:
        """Case-insensitive lookup; a new genre keeps the spelling given."""
        name = name.strip()
        genre = (
            self.db.query(models.Genre)
            .filter(func.lower(models.Genre.name) == name.lower())
            .first()
        )
        if genre is None:
            genre = models.Genre(name=name)
            self.db.add(genre)
            self.db.flush()
        return genre

    def set_genres(self, book: models.Book, names: Iterable[str]) -> None:
        book.genres = [self.find_or_create_genre(name) for name in names]
        self.db.flush()

    def list_genres(self) -> List[models.Genre]:
        return self.db.query(models.Genre).order_by(models.Genre.name).all()

    def remove_orphan_genres(self) -> int:
        """Delete genres no book uses, except the default set."""
        used = self.db.query(models.book_genres.c.genre_id)
        orphans = (
            self.db.query(models.Genre)
            .filter(
                ~models.Genre.id.in_(used),
                models.Genre.name.notin_(DEFAULT_GENRES),
            )
            .all()
        )
        for genre in orphans:
            self.db.delete(genre)
        self.db.flush()
        return len(orphans)

    def count_books(self) -> int:
        return self.db.query(func.count(models.Book.isbn)).scalar() or 0
