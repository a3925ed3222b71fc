from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from library_app import models


class AnalyticsRepository:
    def __init__(self, db: Session):
        self.db = db

    def library_stats(self) -> Dict[str, int]:
        """All library counters in one round trip."""
        open_rentals = models.Rental.returned.is_(False)
        available = models.Copy.available.is_(True)

        row = self.db.execute(
            select(
                select(func.count(models.Book.isbn)).scalar_subquery().label("total_books"),
                select(func.count(models.Member.id)).scalar_subquery().label("total_members"),
                select(func.count(models.Copy.id)).scalar_subquery().label("total_copies"),
                select(func.count(models.Rental.id))
                .where(open_rentals)
                .scalar_subquery()
                .label("books_currently_borrowed"),
                select(func.count(models.Copy.id))
                .where(available)
                .scalar_subquery()
                .label("available_copies"),
            )
        ).one()

        return {key: value or 0 for key, value in row._mapping.items()}
