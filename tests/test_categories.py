from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from cache import CacheCoordinator, InMemoryCacheBackend
from database import Base
from errors import ConflictError, NotFoundError, ValidationError
from models import Category, Expense, User
from services import CategoryService, seed_default_categories


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_users(session, *emails):
    users = [User(email=email, password_hash="x") for email in emails]
    session.add_all(users)
    session.commit()
    return users


def test_list_includes_owned_and_default_sorted_by_name() -> None:
    session = make_session()
    alice, bob = make_users(session, "alice@example.com", "bob@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    seed_default_categories(session, cache, ["Transport", "Food"])
    CategoryService(session, cache, alice.id).create("Books")
    CategoryService(session, cache, bob.id).create("Garden")

    names = [c["name"] for c in CategoryService(session, cache, alice.id).list_all()]

    assert names == ["Books", "Food", "Transport"]


def test_list_is_served_from_cache_until_invalidated() -> None:
    session = make_session()
    (alice,) = make_users(session, "alice@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    service = CategoryService(session, cache, alice.id)
    service.create("Books")
    assert [c["name"] for c in service.list_all()] == ["Books"]

    # a write that bypasses the service is invisible while the entry lives
    session.add(Category(user_id=alice.id, name="Hidden"))
    session.commit()
    assert [c["name"] for c in service.list_all()] == ["Books"]

    service.create("Music")
    assert [c["name"] for c in service.list_all()] == ["Books", "Hidden", "Music"]


def test_duplicate_name_conflicts_only_within_same_user() -> None:
    session = make_session()
    alice, bob = make_users(session, "alice@example.com", "bob@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    CategoryService(session, cache, alice.id).create("Food")

    with pytest.raises(ConflictError):
        CategoryService(session, cache, alice.id).create("Food")
    with pytest.raises(ConflictError):
        CategoryService(session, cache, alice.id).create(" food ")

    created = CategoryService(session, cache, bob.id).create("Food")
    assert created.user_id == bob.id
    assert created.is_default is False


def test_create_requires_user_and_name() -> None:
    session = make_session()
    cache = CacheCoordinator(InMemoryCacheBackend())

    with pytest.raises(ValidationError):
        CategoryService(session, cache, None).create("Food")
    (alice,) = make_users(session, "alice@example.com")
    with pytest.raises(ValidationError):
        CategoryService(session, cache, alice.id).create("   ")


def test_create_for_unknown_user_is_not_found() -> None:
    session = make_session()
    cache = CacheCoordinator(InMemoryCacheBackend())

    with pytest.raises(NotFoundError):
        CategoryService(session, cache, 424242).create("Brand new name")
    assert session.scalars(select(Category)).all() == []


def test_only_name_constraint_failures_become_conflicts() -> None:
    session = make_session()
    (alice,) = make_users(session, "alice@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    service = CategoryService(session, cache, alice.id)
    food = service.create("Food")
    # another writer inserted the same name after the pre-check
    service._name_taken = lambda name, exclude_id=None: False

    with pytest.raises(ConflictError):
        service.create("Food")

    session.add(
        Expense(
            user_id=alice.id,
            title="Broken",
            amount_cents=-1,
            date=datetime(2025, 7, 1),
            category_id=food.id,
        )
    )
    with pytest.raises(IntegrityError):
        service.create("Travel")


def test_update_checks_ownership_and_uniqueness() -> None:
    session = make_session()
    alice, bob = make_users(session, "alice@example.com", "bob@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    service = CategoryService(session, cache, alice.id)
    food = service.create("Food")
    service.create("Travel")

    with pytest.raises(NotFoundError):
        CategoryService(session, cache, bob.id).update(food.id, "Groceries")
    with pytest.raises(NotFoundError):
        service.update(12345, "Groceries")
    with pytest.raises(ConflictError):
        service.update(food.id, "Travel")

    renamed = service.update(food.id, "Groceries")
    assert renamed.name == "Groceries"
    assert [c["name"] for c in service.list_all()] == ["Groceries", "Travel"]


def test_default_categories_cannot_be_changed_by_users() -> None:
    session = make_session()
    (alice,) = make_users(session, "alice@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    seed_default_categories(session, cache, ["Food"])
    default = session.query(Category).filter_by(is_default=True).one()

    with pytest.raises(NotFoundError):
        CategoryService(session, cache, alice.id).update(default.id, "Mine")
    with pytest.raises(NotFoundError):
        CategoryService(session, cache, alice.id).delete(default.id)


def test_delete_blocked_while_expenses_reference_category() -> None:
    session = make_session()
    (alice,) = make_users(session, "alice@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    service = CategoryService(session, cache, alice.id)
    food = service.create("Food")
    expense = Expense(
        user_id=alice.id,
        title="Lunch",
        amount_cents=1250,
        date=datetime(2025, 7, 10, 12, 0),
        category_id=food.id,
    )
    session.add(expense)
    session.commit()

    with pytest.raises(ConflictError):
        service.delete(food.id)

    session.delete(expense)
    session.commit()
    service.delete(food.id)

    assert service.list_all() == []
    assert session.get(Category, food.id) is None


def test_writes_drop_the_users_list_key() -> None:
    session = make_session()
    (alice,) = make_users(session, "alice@example.com")
    backend = InMemoryCacheBackend()
    cache = CacheCoordinator(backend)
    service = CategoryService(session, cache, alice.id)

    service.list_all()
    assert backend.keys() == [f"categories:user:{alice.id}"]

    food = service.create("Food")
    assert backend.keys() == []

    service.list_all()
    service.delete(food.id)
    assert backend.keys() == []


def test_seeding_defaults_is_idempotent_and_refreshes_lists() -> None:
    session = make_session()
    (alice,) = make_users(session, "alice@example.com")
    cache = CacheCoordinator(InMemoryCacheBackend())
    service = CategoryService(session, cache, alice.id)
    assert service.list_all() == []

    assert seed_default_categories(session, cache, ["Food", "Transport"]) == 2
    assert seed_default_categories(session, cache, ["food", "Transport"]) == 0

    listed = service.list_all()
    assert [c["name"] for c in listed] == ["Food", "Transport"]
    assert all(c["isDefault"] and c["userId"] is None for c in listed)
