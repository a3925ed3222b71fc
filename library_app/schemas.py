from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


def normalize_genres(value: Any) -> Optional[List[str]]:
    """
    Turn genre input into a clean list of labels.

    Accepts a comma-separated string or a list of strings. Labels are
    trimmed, empty ones dropped and duplicates removed case-insensitively,
    keeping the first spelling seen. None passes through so that updates
    can tell "leave genres alone" apart from "clear genres".
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        raise ValueError("genres must be a string or a list of strings")

    labels: List[str] = []
    seen = set()
    for item in value:
        if not isinstance(item, str):
            raise ValueError("genres must be a string or a list of strings")
        label = item.strip()
        if label and label.lower() not in seen:
            seen.add(label.lower())
            labels.append(label)
    return labels


class GenreInputMixin(BaseModel):
    @field_validator("genres", mode="before", check_fields=False)
    @classmethod
    def _normalize_genres(cls, value: Any) -> Optional[List[str]]:
        return normalize_genres(value)


class Genre(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class BookBase(BaseModel):
    """Base schema with common book fields."""

    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=200)
    publication_year: int = Field(..., ge=0, le=9999)
    description: str = Field("", max_length=5000)

    model_config = ConfigDict(str_strip_whitespace=True)


class BookCreate(GenreInputMixin, BookBase):
    """
    Schema for adding a book to the catalogue.

    ``genres`` takes a list or a comma-separated string. ``initial_copies``
    physical copies are created together with the book.
    """

    isbn: str = Field(..., min_length=1, max_length=20)
    genres: List[str] = Field(default_factory=list)
    initial_copies: int = Field(1, ge=0, le=100)


class BookUpdate(GenreInputMixin, BaseModel):
    """
    Schema for editing a book.

    All fields are optional. ``genres=None`` keeps the current genres,
    a list (even an empty one) replaces them.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    author: Optional[str] = Field(None, min_length=1, max_length=200)
    publication_year: Optional[int] = Field(None, ge=0, le=9999)
    description: Optional[str] = Field(None, max_length=5000)
    genres: Optional[List[str]] = None

    model_config = ConfigDict(str_strip_whitespace=True)


class BookSummary(BookBase):
    isbn: str

    model_config = ConfigDict(from_attributes=True)


class Copy(BaseModel):
    id: int
    book_isbn: str
    available: bool

    model_config = ConfigDict(from_attributes=True)


class CopyWithBook(Copy):
    """Copy joined with the display fields of its book."""

    book: BookSummary


class Book(BookSummary):
    """
    Schema for book responses.

    Copy counts are derived from the copy rows at read time.
    """

    genres: List[str] = []
    total_copies: int = 0
    available_copies: int = 0

    @field_validator("genres", mode="before")
    @classmethod
    def _genre_names(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [getattr(item, "name", item) for item in value]
        return value


class BookWithCopies(Book):
    copies: List[Copy] = []


class MemberBase(BaseModel):
    """All member fields are required."""

    first_name: str = Field(..., min_length=1, max_length=100)
    surname: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254, pattern=EMAIL_PATTERN)
    phone: str = Field(..., min_length=1, max_length=30)
    address: str = Field(..., min_length=1, max_length=300)
    city: str = Field(..., min_length=1, max_length=100)
    postcode: str = Field(..., min_length=1, max_length=20)

    model_config = ConfigDict(str_strip_whitespace=True)


class MemberCreate(MemberBase):
    pass


class MemberUpdate(MemberBase):
    pass


class Member(MemberBase):
    id: int
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MemberSummary(BaseModel):
    id: int
    first_name: str
    surname: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class Rental(BaseModel):
    """
    Schema for rental responses.

    returned_at stays null while the rental is open.
    """

    id: int
    member_id: int
    copy_id: int
    rented_at: datetime
    returned: bool
    returned_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RentalWithBook(Rental):
    """Rental joined with the copy and the book's display fields."""

    book_copy: CopyWithBook


class RentalWithMember(Rental):
    """Rental joined with the member's display fields, for book history."""

    member: MemberSummary


class RentalDetail(Rental):
    book_copy: CopyWithBook
    member: MemberSummary


class BookDetails(BaseModel):
    book: BookWithCopies
    rental_history: List[RentalWithMember] = []
    currently_borrowed: bool
    total_rentals: int


class RentRequest(BaseModel):
    """
    Selector for a rent call: exactly one of a specific copy, a book ISBN
    or a book title.
    """

    copy_id: Optional[int] = Field(None, gt=0)
    isbn: Optional[str] = Field(None, min_length=1, max_length=20)
    title: Optional[str] = Field(None, min_length=1, max_length=500)

    @model_validator(mode="after")
    def _exactly_one(self) -> "RentRequest":
        given = [v for v in (self.copy_id, self.isbn, self.title) if v is not None]
        if len(given) != 1:
            raise ValueError("Provide exactly one of copy_id, isbn or title")
        return self


class ReturnRequest(BaseModel):
    """Selector for a return call: a specific copy or a book ISBN."""

    copy_id: Optional[int] = Field(None, gt=0)
    isbn: Optional[str] = Field(None, min_length=1, max_length=20)

    @model_validator(mode="after")
    def _exactly_one(self) -> "ReturnRequest":
        if (self.copy_id is None) == (self.isbn is None):
            raise ValueError("Provide exactly one of copy_id or isbn")
        return self


class LibraryStats(BaseModel):
    total_books: int
    total_members: int
    total_copies: int
    books_currently_borrowed: int
    available_copies: int


class Count(BaseModel):
    count: int
