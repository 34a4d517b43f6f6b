"""
Shared fixtures for the sqlfacade tests.

The tests run against file-backed SQLite databases so that every
short-lived connection sees the same data.
"""
from collections import namedtuple
from dataclasses import dataclass
from typing import List, Optional
from unittest.mock import patch

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, create_engine

metadata = MetaData()

users = Table('users', metadata,
    Column('id', Integer, primary_key=True),
    Column('user_name', String(50), nullable=False, unique=True),
    Column('email', String(100))
)

orders = Table('orders', metadata,
    Column('id', Integer, primary_key=True),
    Column('user_id', Integer, ForeignKey('users.id'), nullable=False),
    Column('amount', Integer, nullable=False),
    Column('note', String(100))
)

USERS = [
    {"id": 1, "user_name": "alice", "email": "alice@example.com"},
    {"id": 2, "user_name": "bob", "email": None},
    {"id": 3, "user_name": "carol", "email": "carol@example.com"},
]

ORDERS = [
    {"id": 10, "user_id": 1, "amount": 100, "note": "first"},
    {"id": 11, "user_id": 1, "amount": 250, "note": None},
    {"id": 12, "user_id": 2, "amount": 75, "note": "rush"},
]

INSERT_USER = "INSERT INTO users (id, user_name, email) VALUES (:id, :user_name, :email)"


@dataclass
class User:
    id: int
    user_name: str
    email: Optional[str] = None


@dataclass
class Order:
    id: int
    user_id: int
    amount: int
    note: Optional[str] = None


OrderRow = namedtuple("OrderRow", ["id", "amount"])


def create_database(path) -> str:
    """Create and seed a SQLite database file, returning its URL."""
    url = f"sqlite:///{path}"
    engine = create_engine(url)
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(users.insert(), USERS)
        conn.execute(orders.insert(), ORDERS)
    engine.dispose()
    return url


class HandleRecorder:
    """Records every connection handle a provider hands out."""

    def __init__(self, provider):
        self.provider = provider
        self.handles: List = []
        self._patches = []

    def _recording(self, factory):
        def new_handle():
            handle = factory()
            self.handles.append(handle)
            return handle
        return new_handle

    @property
    def states(self):
        return [handle.state for handle in self.handles]

    def __enter__(self):
        self._patches = [
            patch.object(self.provider, "new_handle",
                         side_effect=self._recording(self.provider.new_handle)),
            patch.object(self.provider, "new_async_handle",
                         side_effect=self._recording(self.provider.new_async_handle)),
        ]
        for p in self._patches:
            p.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        for p in reversed(self._patches):
            p.stop()
