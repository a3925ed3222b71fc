from datetime import datetime
from library_app.database import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    text,
)


book_genres = Table(
    "book_genres",
    Base.metadata,
    Column("isbn", String, ForeignKey("books.isbn"), primary_key=True),
    Column("genre_id", Integer, ForeignKey("genres.id"), primary_key=True),
)


class Book(Base):
    """
    Book model, one row per title.

    Relationships:
    - One book has many physical copies (one-to-many)
    - Many books share many genres (many-to-many through book_genres)

    Availability is not stored here. It is always derived from the
    ``available`` flag of the book's copies.
    """

    __tablename__ = "books"

    isbn = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    publication_year = Column(Integer, nullable=False)
    description = Column(Text, nullable=False, default="")

    copies = relationship(
        "Copy",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="Copy.id",
    )
    genres = relationship(
        "Genre",
        secondary=book_genres,
        back_populates="books",
        order_by="Genre.name",
    )

    @property
    def total_copies(self) -> int:
        return len(self.copies)

    @property
    def available_copies(self) -> int:
        return sum(1 for copy in self.copies if copy.available)


class Genre(Base):
    __tablename__ = "genres"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)

    books = relationship("Book", secondary=book_genres, back_populates="genres")


class Copy(Base):
    """
    A single physical, independently rentable instance of a book.

    ``available`` is True exactly when no open rental references the copy.
    Rows with rental history are never deleted.
    """

    __tablename__ = "copies"

    id = Column(Integer, primary_key=True, index=True)
    book_isbn = Column(String, ForeignKey("books.isbn"), nullable=False, index=True)
    available = Column(Boolean, default=True, nullable=False)

    book = relationship("Book", back_populates="copies")
    rentals = relationship("Rental", back_populates="book_copy")


class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False, index=True)
    surname = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String, nullable=False)
    address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    postcode = Column(String, nullable=False)
    joined_at = Column(DateTime, default=datetime.now, nullable=False)

    rentals = relationship("Rental", back_populates="member")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.surname}"


class Rental(Base):
    """
    Rental model, the historical record of one copy lent to one member.

    Business Logic:
    - returned is False while the rental is open
    - returned_at is stamped once, when the copy comes back
    - rows are never deleted

    The partial unique index guarantees that a copy is referenced by at
    most one open rental, even if two writers race past the service checks.
    """

    __tablename__ = "rentals"
    __table_args__ = (
        Index(
            "ix_rentals_one_open_per_copy",
            "copy_id",
            unique=True,
            sqlite_where=text("returned = 0"),
            postgresql_where=text("returned = false"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    copy_id = Column(Integer, ForeignKey("copies.id"), nullable=False, index=True)
    rented_at = Column(DateTime, default=datetime.now, nullable=False)
    returned = Column(Boolean, default=False, nullable=False)
    returned_at = Column(DateTime, nullable=True)

    member = relationship("Member", back_populates="rentals")
    book_copy = relationship("Copy", back_populates="rentals")
