from library_app import models
from library_app import schemas
from library_app.config import Settings, get_settings
from library_app.database import engine, get_db
from library_app.exceptions import LibraryError, StorageError
from library_app.logging_config import get_logger, setup_logging
from library_app.services.analytics import AnalyticsService
from library_app.services.books import BookService
from library_app.services.members import MemberService
from library_app.services.rentals import RentalService

from typing import List
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from fastapi import FastAPI, Depends, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


settings = get_settings()
setup_logging(settings.log_level)
logger = get_logger("api")

models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.app_name,
    description="Library lending service: books, copies, members and rentals",
    version="1.0.0",
    debug=settings.debug,
)


def _error_response(exc: LibraryError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error_code": exc.error_code,
            "details": jsonable_encoder(exc.details),
        },
    )


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    """
    Map the error taxonomy to HTTP responses.

    Each LibraryError subclass carries its own status code, so a
    NotFoundError becomes 404, UnavailableError 409, and so on. The body
    always has the human-readable ``detail`` plus a stable ``error_code``.
    """
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are reported as VALIDATION_ERROR with status 400."""
    errors = jsonable_encoder(exc.errors())
    message = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', []))}: {error.get('msg')}"
        for error in errors
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": message or "Invalid request",
            "error_code": "VALIDATION_ERROR",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    """Database failures outside a transaction() scope, e.g. plain reads."""
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return _error_response(StorageError())


def get_book_service(db: Session = Depends(get_db)) -> BookService:
    return BookService(db)


def get_member_service(db: Session = Depends(get_db)) -> MemberService:
    return MemberService(db)


def get_rental_service(
    db: Session = Depends(get_db), app_settings: Settings = Depends(get_settings)
) -> RentalService:
    """
    Build the lifecycle service for one request.

    The rental limit comes from settings so tests can override
    ``get_settings`` to change it.
    """
    return RentalService(db, rental_limit=app_settings.rental_limit)


def get_analytics_service(db: Session = Depends(get_db)) -> AnalyticsService:
    return AnalyticsService(db)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        Simple status message indicating the service is running
    """
    return {"status": "healthy", "service": "library-api"}


@app.get("/books", response_model=List[schemas.BookWithCopies])
async def list_books(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    service: BookService = Depends(get_book_service),
):
    """
    List books ordered by title, each with its genres and copies.

    ``total_copies`` and ``available_copies`` are computed from the copy
    rows on every call.
    """
    return service.list_books(skip=skip, limit=limit)


@app.get("/books/search", response_model=List[schemas.Book])
async def search_books(
    q: str = Query(..., min_length=1), service: BookService = Depends(get_book_service)
):
    """Case-insensitive substring search over title, author and ISBN."""
    return service.search_books(q)


@app.get("/books/by-title/{title}", response_model=schemas.Book)
async def get_book_by_title(title: str, service: BookService = Depends(get_book_service)):
    return service.get_book_by_title(title)


@app.post(
    "/books",
    response_model=schemas.BookWithCopies,
    status_code=status.HTTP_201_CREATED,
)
async def create_book(
    book: schemas.BookCreate, service: BookService = Depends(get_book_service)
):
    """
    Add a book to the catalogue.

    Business Logic:
    - ISBN must be unique (409 otherwise)
    - genres are found or created by name, ignoring case
    - ``initial_copies`` copies are created in the same transaction

    Args:
        book: Validated book data; genres may be a list or "a, b, c"
        service: Catalogue service (injected)

    Returns:
        The created book with its copies
    """
    return service.add_book(book)


@app.get("/books/{isbn}", response_model=schemas.BookDetails)
async def get_book(isbn: str, service: BookService = Depends(get_book_service)):
    """
    Get a book with its copies and complete rental history.

    Raises:
        NotFoundError: 404 if no book has this ISBN
    """
    return service.get_book_details(isbn)


@app.put("/books/{isbn}", response_model=schemas.BookWithCopies)
async def update_book(
    isbn: str,
    book_update: schemas.BookUpdate,
    service: BookService = Depends(get_book_service),
):
    """
    Update a book's information.

    Only provided fields change. Sending ``genres`` replaces the whole
    genre list; leaving it out keeps the current one.
    """
    return service.edit_book(isbn, book_update)


@app.delete("/books/{isbn}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(isbn: str, service: BookService = Depends(get_book_service)):
    """Delete a book and its copies; refused with 409 once any copy was rented."""
    service.delete_book(isbn)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/genres", response_model=List[schemas.Genre])
async def list_genres(service: BookService = Depends(get_book_service)):
    return service.list_genres()


@app.get("/books/{isbn}/copies", response_model=List[schemas.Copy])
async def list_copies(isbn: str, service: BookService = Depends(get_book_service)):
    return service.list_copies(isbn)


@app.get("/books/{isbn}/copies/available", response_model=List[schemas.Copy])
async def list_available_copies(
    isbn: str, service: RentalService = Depends(get_rental_service)
):
    """Copies that can be rented right now, lowest copy id first."""
    return service.available_copies(isbn)


@app.post(
    "/books/{isbn}/copies",
    response_model=schemas.Copy,
    status_code=status.HTTP_201_CREATED,
)
async def add_copy(isbn: str, service: BookService = Depends(get_book_service)):
    """Register a newly acquired physical copy; it starts out available."""
    return service.add_copy(isbn)


@app.get("/copies/rented", response_model=List[schemas.CopyWithBook])
async def list_rented_copies(service: BookService = Depends(get_book_service)):
    return service.rented_copies()


@app.get("/copies/{copy_id}", response_model=schemas.CopyWithBook)
async def get_copy(copy_id: int, service: BookService = Depends(get_book_service)):
    return service.get_copy(copy_id)


@app.delete("/copies/{copy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_copy(copy_id: int, service: BookService = Depends(get_book_service)):
    """
    Delete a copy.

    A copy that has ever been rented keeps its row so that the rental
    history stays intact; deleting it returns 409.
    """
    service.delete_copy(copy_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/members", response_model=List[schemas.Member])
async def list_members(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    service: MemberService = Depends(get_member_service),
):
    return service.list_members(skip=skip, limit=limit)


@app.get("/members/search", response_model=List[schemas.Member])
async def search_members(
    q: str = Query(..., min_length=1), service: MemberService = Depends(get_member_service)
):
    """
    Search members.

    A numeric query looks up that member id; any other text matches first
    name, surname or full name.
    """
    return service.search_members(q)


@app.post(
    "/members",
    response_model=schemas.Member,
    status_code=status.HTTP_201_CREATED,
)
async def create_member(
    member: schemas.MemberCreate, service: MemberService = Depends(get_member_service)
):
    """
    Register a new member.

    All fields are required and the email must be well formed (400
    otherwise). Emails are unique across members (409).
    """
    return service.create_member(member)


@app.get("/members/{member_id}", response_model=schemas.Member)
async def get_member(member_id: int, service: MemberService = Depends(get_member_service)):
    return service.get_member(member_id)


@app.put("/members/{member_id}", response_model=schemas.Member)
async def update_member(
    member_id: int,
    member: schemas.MemberUpdate,
    service: MemberService = Depends(get_member_service),
):
    return service.update_member(member_id, member)


@app.delete("/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_member(
    member_id: int, service: MemberService = Depends(get_member_service)
):
    service.delete_member(member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/members/{member_id}/rentals", response_model=List[schemas.RentalWithBook])
async def list_member_rentals(
    member_id: int, service: RentalService = Depends(get_rental_service)
):
    """The member's open rentals, each with the copy and book it refers to."""
    return service.open_rentals(member_id)


@app.post(
    "/members/{member_id}/rentals",
    response_model=schemas.Rental,
    status_code=status.HTTP_201_CREATED,
)
async def rent(
    member_id: int,
    request: schemas.RentRequest,
    service: RentalService = Depends(get_rental_service),
):
    """
    Rent a copy to a member.

    The body names exactly one of:
    - ``copy_id``: that specific copy
    - ``isbn``: the available copy of the book with the lowest id
    - ``title``: same as isbn, after looking the book up by title

    Failure responses:
    - 404 NOT_FOUND: member, book or copy does not exist
    - 409 UNAVAILABLE: no copy is free
    - 422 RENTAL_LIMIT_EXCEEDED: the member already holds the maximum

    Returns:
        The new open rental
    """
    return service.rent(member_id, request)


@app.post(
    "/members/{member_id}/rent/{title}",
    response_model=schemas.Rental,
    status_code=status.HTTP_201_CREATED,
)
async def rent_by_title(
    member_id: int, title: str, service: RentalService = Depends(get_rental_service)
):
    """Rent by book title in the URL; same rules as POST /members/{id}/rentals."""
    return service.rent_by_title(member_id, title)


@app.post("/members/{member_id}/returns", response_model=schemas.Rental)
async def return_rental(
    member_id: int,
    request: schemas.ReturnRequest,
    service: RentalService = Depends(get_rental_service),
):
    """
    Return a copy.

    The body names ``copy_id`` or ``isbn``. The member must currently hold
    that copy (or a copy of that book); otherwise the response is 404 and
    nothing changes, which also covers returning the same copy twice.

    Returns:
        The closed rental with ``returned_at`` set
    """
    return service.return_rental(member_id, request)


@app.get("/rentals", response_model=List[schemas.RentalDetail])
async def list_rentals(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    active_only: bool = Query(False),
    service: RentalService = Depends(get_rental_service),
):
    """
    List rentals with copy, book and member information.

    Args:
        active_only: If True, only rentals that are still open
    """
    return service.list_rentals(active_only=active_only, skip=skip, limit=limit)


@app.get("/analytics/stats", response_model=schemas.LibraryStats)
async def library_stats(service: AnalyticsService = Depends(get_analytics_service)):
    return service.library_stats()


@app.get("/analytics/books/total", response_model=schemas.Count)
async def total_books(service: AnalyticsService = Depends(get_analytics_service)):
    return {"count": service.total_books()}


@app.get("/analytics/members/total", response_model=schemas.Count)
async def total_members(service: AnalyticsService = Depends(get_analytics_service)):
    return {"count": service.total_members()}


@app.get("/analytics/books/borrowed", response_model=schemas.Count)
async def borrowed_books(service: AnalyticsService = Depends(get_analytics_service)):
    return {"count": service.borrowed_count()}


@app.get("/analytics/books/available", response_model=schemas.Count)
async def available_books(service: AnalyticsService = Depends(get_analytics_service)):
    return {"count": service.available_count()}
