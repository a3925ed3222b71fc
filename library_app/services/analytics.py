from sqlalchemy.orm import Session

from library_app import schemas
from library_app.database import storage_errors
from library_app.repositories.analytics import AnalyticsRepository


class AnalyticsService:
    """
    Library-wide counters.

    Storage errors are not masked with zeros; they reach the caller as
    StorageError.
    """

    def __init__(self, db: Session):
        self.db = db
        self.analytics = AnalyticsRepository(db)

    def library_stats(self) -> schemas.LibraryStats:
        with storage_errors(self.db):
            counts = self.analytics.library_stats()
        return schemas.LibraryStats(**counts)

    def total_books(self) -> int:
        return self.library_stats().total_books

    def total_members(self) -> int:
        return self.library_stats().total_members

    def borrowed_count(self) -> int:
        return self.library_stats().books_currently_borrowed

    def available_count(self) -> int:
        return self.library_stats().available_copies
