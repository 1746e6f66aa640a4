from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from csv_utils import cents_to_amount
from models import Category, Expense
from periods import Period, month_period

UNKNOWN_CATEGORY = "Unknown"


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    category_name: str
    total_cents: int

    def as_dict(self) -> dict[str, object]:
        return {
            "categoryId": self.category_id,
            "categoryName": self.category_name,
            "total": cents_to_amount(self.total_cents),
        }


class AggregationEngine:
    """Per-user expense totals; sums stay in integer cents until output."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def totals_by_category(self, start: datetime, end: datetime) -> list[CategoryTotal]:
        stmt = (
            select(
                Expense.category_id.label("category_id"),
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
            )
            .where(
                Expense.user_id == self.user_id,
                Expense.date >= start,
                Expense.date <= end,
            )
            .group_by(Expense.category_id)
            .order_by(Expense.category_id)
        )
        rows = self.session.execute(stmt).all()
        if not rows:
            return []

        ids = [row.category_id for row in rows]
        names = dict(
            self.session.execute(
                select(Category.id, Category.name).where(Category.id.in_(ids))
            ).all()
        )
        return [
            CategoryTotal(
                category_id=row.category_id,
                category_name=names.get(row.category_id, UNKNOWN_CATEGORY),
                total_cents=int(row.total or 0),
            )
            for row in rows
        ]

    def monthly_summary(self, year: int, month: int) -> dict[str, object]:
        start, end = month_period(year, month).window()
        totals = self.totals_by_category(start, end)
        total_cents = sum(item.total_cents for item in totals)
        return {
            "totalGlobal": cents_to_amount(total_cents),
            "byCategory": [item.as_dict() for item in totals],
        }

    def category_summary(self, period: Period) -> list[dict[str, object]]:
        start, end = period.window()
        return [item.as_dict() for item in self.totals_by_category(start, end)]
