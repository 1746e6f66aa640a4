from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from aggregation import AggregationEngine
from auth import hash_password
from cache import (
    CATEGORIES,
    SUMMARY_CATEGORIES,
    SUMMARY_MONTHLY,
    CacheCoordinator,
    cache_key_for,
)
from csv_utils import cents_to_amount, parse_amount
from errors import ConflictError, NotFoundError, ValidationError
from models import Category, Expense, User
from periods import month_period, parse_timestamp, resolve_optional_range, resolve_range
from schemas import ExpenseIn, ExpenseUpdate

logger = logging.getLogger(__name__)

NAME_CONSTRAINT = "uq_category_user_name"


def category_to_dict(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "isDefault": category.is_default,
        "userId": category.user_id,
    }


def expense_to_dict(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "title": expense.title,
        "description": expense.description,
        "amount": cents_to_amount(expense.amount_cents),
        "date": expense.date.isoformat(),
        "categoryId": expense.category_id,
        "category": category_to_dict(expense.category) if expense.category else None,
    }


def _require_user(user_id: Optional[int]) -> int:
    if not user_id:
        raise ValidationError("userId is required")
    return user_id


def _require_existing_user(session: Session, user_id: Optional[int]) -> int:
    _require_user(user_id)
    if session.get(User, user_id) is None:
        raise NotFoundError("User not found")
    return user_id


def _is_name_clash(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    # sqlite names the columns rather than the constraint
    return (
        NAME_CONSTRAINT in message
        or "categories.user_id, categories.name" in message
    )


def _clean_name(name: Optional[str]) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ValidationError("Category name cannot be empty")
    return clean


def seed_default_categories(
    session: Session, cache: CacheCoordinator, names: Sequence[str]
) -> int:
    existing = {
        name.lower()
        for name in session.scalars(
            select(Category.name).where(Category.is_default.is_(True))
        )
    }
    created = 0
    for name in names:
        clean = name.strip()
        if not clean or clean.lower() in existing:
            continue
        session.add(Category(user_id=None, name=clean, is_default=True))
        existing.add(clean.lower())
        created += 1
    if created:
        session.commit()
        cache.invalidate_all_category_lists()
    logger.info(f"seed_default_categories: created={created}")
    return created


def user_to_dict(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "createdAt": user.created_at.isoformat(),
    }


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def signup(self, email: str, password: str) -> User:
        clean = (email or "").strip().lower()
        if not clean or not password:
            raise ValidationError("Email and password are required")
        # bcrypt only looks at the first 72 bytes
        if len(password.encode("utf-8")) > 72:
            raise ValidationError("Password is too long")
        taken = self.session.scalar(
            select(User.id).where(func.lower(User.email) == clean)
        )
        if taken is not None:
            raise ConflictError("A user with this email already exists")
        user = User(email=clean, password_hash=hash_password(password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("A user with this email already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_signed_up: id={user.id}")
        return user


@dataclass
class ExpenseFilters:
    category_id: Optional[int] = None
    start: Optional[str] = None
    end: Optional[str] = None


class CategoryService:
    def __init__(
        self, session: Session, cache: CacheCoordinator, user_id: Optional[int]
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id

    @property
    def cache_key(self) -> str:
        return cache_key_for(CATEGORIES, self.user_id)

    def list_all(self) -> list[dict[str, object]]:
        _require_user(self.user_id)
        return self.cache.read_through(self.cache_key, self._load_visible)

    def _load_visible(self) -> list[dict[str, object]]:
        stmt = (
            select(Category)
            .where(
                or_(Category.user_id == self.user_id, Category.is_default.is_(True))
            )
            .order_by(Category.name.asc(), Category.id.asc())
        )
        return [category_to_dict(c) for c in self.session.scalars(stmt).all()]

    def get_owned(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def get_visible(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or (
            category.user_id != self.user_id and not category.is_default
        ):
            raise NotFoundError("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def _commit_or_conflict(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if _is_name_clash(exc):
                raise ConflictError("Category with this name already exists") from exc
            raise

    def create(self, name: str) -> Category:
        _require_existing_user(self.session, self.user_id)
        clean = _clean_name(name)
        if self._name_taken(clean):
            raise ConflictError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=clean, is_default=False)
        self.session.add(category)
        self._commit_or_conflict()
        self.session.refresh(category)
        self.cache.invalidate(self.cache_key)
        return category

    def update(self, category_id: int, name: str) -> Category:
        category = self.get_owned(category_id)
        clean = _clean_name(name)
        if self._name_taken(clean, exclude_id=category.id):
            raise ConflictError("Category with this name already exists")
        category.name = clean
        self._commit_or_conflict()
        self.session.refresh(category)
        self.cache.invalidate(self.cache_key)
        # summaries embed category names
        self.cache.invalidate_user_summaries(self.user_id)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get_owned(category_id)
        linked = self.session.scalar(
            select(Expense.id).where(Expense.category_id == category.id).limit(1)
        )
        if linked is not None:
            raise ConflictError(
                "Category cannot be deleted while expenses reference it"
            )
        self.session.delete(category)
        self.session.commit()
        self.cache.invalidate(self.cache_key)
        self.cache.invalidate_user_summaries(self.user_id)

    def find_or_create(self, name: str) -> tuple[Category, bool]:
        """Match case-insensitively among owned categories, then defaults.

        Returns the category and whether it was created. New categories are
        only flushed; the caller commits and drops the list cache key.
        """
        _require_user(self.user_id)
        clean = _clean_name(name)
        stmt = (
            select(Category)
            .where(
                or_(Category.user_id == self.user_id, Category.is_default.is_(True)),
                func.lower(Category.name) == clean.lower(),
            )
            .order_by(Category.is_default.asc(), Category.id.asc())
        )
        existing = self.session.scalars(stmt).first()
        if existing:
            return existing, False
        category = Category(user_id=self.user_id, name=clean, is_default=False)
        self.session.add(category)
        self.session.flush()
        return category, True


class ExpenseService:
    def __init__(
        self, session: Session, cache: CacheCoordinator, user_id: Optional[int]
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id
        self.categories = CategoryService(session, cache, user_id)

    def _resolve_category(
        self, category_id: Optional[int], category_name: Optional[str]
    ) -> tuple[Category, bool]:
        if category_id is not None:
            return self.categories.get_visible(category_id), False
        if category_name and category_name.strip():
            return self.categories.find_or_create(category_name)
        raise ValidationError("categoryId or category name is required")

    def _after_write(self, categories_changed: bool = False) -> None:
        self.cache.invalidate_user_summaries(self.user_id)
        if categories_changed:
            self.cache.invalidate(self.categories.cache_key)

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id, Expense.id == expense_id)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        _require_user(self.user_id)
        filters = filters or ExpenseFilters()
        lower, upper = resolve_optional_range(filters.start, filters.end)
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        if filters.category_id:
            stmt = stmt.where(Expense.category_id == filters.category_id)
        if lower is not None:
            stmt = stmt.where(Expense.date >= lower)
        if upper is not None:
            stmt = stmt.where(Expense.date <= upper)
        return self.session.scalars(stmt).all()

    def create(self, data: ExpenseIn) -> Expense:
        _require_existing_user(self.session, self.user_id)
        amount_cents = parse_amount(data.amount)
        occurred = parse_timestamp(data.date)
        category, category_created = self._resolve_category(
            data.category_id, data.category
        )
        expense = Expense(
            user_id=self.user_id,
            title=data.title.strip(),
            description=data.description,
            amount_cents=amount_cents,
            date=occurred,
            category_id=category.id,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        self._after_write(categories_changed=category_created)
        logger.debug(f"expense_created: user={self.user_id} id={expense.id}")
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        fields = data.model_dump(exclude_unset=True)
        category_created = False

        if "title" in fields and data.title is not None:
            expense.title = data.title.strip()
        if "description" in fields:
            expense.description = data.description
        if "amount" in fields and data.amount is not None:
            expense.amount_cents = parse_amount(data.amount)
        if "date" in fields and data.date is not None:
            expense.date = parse_timestamp(data.date)
        if data.category_id is not None or (data.category and data.category.strip()):
            category, category_created = self._resolve_category(
                data.category_id, data.category
            )
            expense.category_id = category.id

        self.session.commit()
        self.session.refresh(expense)
        self._after_write(categories_changed=category_created)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()
        self._after_write()


class SummaryService:
    def __init__(
        self, session: Session, cache: CacheCoordinator, user_id: Optional[int]
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id

    def monthly(self, year: Optional[int], month: Optional[int]) -> dict[str, object]:
        if not self.user_id or not year or not month:
            raise ValidationError("userId, year and month are required")
        month_period(year, month)
        key = cache_key_for(SUMMARY_MONTHLY, self.user_id, year, month)
        engine = AggregationEngine(self.session, self.user_id)
        return self.cache.read_through(
            key, lambda: engine.monthly_summary(year, month)
        )

    def by_categories(
        self, start: Optional[str], end: Optional[str]
    ) -> list[dict[str, object]]:
        period = resolve_range(start, end)
        if not self.user_id:
            raise ValidationError("userId is required")
        key = cache_key_for(SUMMARY_CATEGORIES, self.user_id, period.start, period.end)
        engine = AggregationEngine(self.session, self.user_id)
        return self.cache.read_through(key, lambda: engine.category_summary(period))
