"""Pytest configuration and fixtures for doc_engine tests."""

from __future__ import annotations

import copy
from typing import Any, Generator

import pytest
from prometheus_client import CollectorRegistry

from doc_engine.application import DocumentStore
from doc_engine.infrastructure.config import Config, IndexConfig, QueryConfig
from doc_engine.infrastructure.container import Container, reset_container
from doc_engine.infrastructure.metrics import MetricsRegistry

CATALOG: list[dict[str, Any]] = [
    {"title": "To Kill a Mockingbird", "author": "Harper Lee", "genre": "Fiction",
     "published_year": 1960, "price": 12.99, "in_stock": True, "pages": 336,
     "publisher": "J. B. Lippincott & Co."},
    {"title": "1984", "author": "George Orwell", "genre": "Dystopian",
     "published_year": 1949, "price": 10.99, "in_stock": True, "pages": 328,
     "publisher": "Secker & Warburg"},
    {"title": "The Great Gatsby", "author": "F. Scott Fitzgerald", "genre": "Fiction",
     "published_year": 1925, "price": 9.99, "in_stock": True, "pages": 180,
     "publisher": "Charles Scribner's Sons"},
    {"title": "Brave New World", "author": "Aldous Huxley", "genre": "Dystopian",
     "published_year": 1932, "price": 11.50, "in_stock": False, "pages": 311,
     "publisher": "Chatto & Windus"},
    {"title": "The Hobbit", "author": "J.R.R. Tolkien", "genre": "Fantasy",
     "published_year": 1937, "price": 14.99, "in_stock": True, "pages": 310,
     "publisher": "George Allen & Unwin"},
    {"title": "The Catcher in the Rye", "author": "J.D. Salinger", "genre": "Fiction",
     "published_year": 1951, "price": 8.99, "in_stock": True, "pages": 224,
     "publisher": "Little, Brown and Company"},
    {"title": "Pride and Prejudice", "author": "Jane Austen", "genre": "Romance",
     "published_year": 1813, "price": 7.99, "in_stock": True, "pages": 432,
     "publisher": "T. Egerton"},
    {"title": "The Lord of the Rings", "author": "J.R.R. Tolkien", "genre": "Fantasy",
     "published_year": 1954, "price": 19.99, "in_stock": True, "pages": 1178,
     "publisher": "Allen & Unwin"},
    {"title": "Animal Farm", "author": "George Orwell", "genre": "Political Satire",
     "published_year": 1945, "price": 8.50, "in_stock": False, "pages": 112,
     "publisher": "Secker & Warburg"},
    {"title": "The Alchemist", "author": "Paulo Coelho", "genre": "Fiction",
     "published_year": 1988, "price": 10.99, "in_stock": True, "pages": 197,
     "publisher": "HarperOne"},
    {"title": "Moby Dick", "author": "Herman Melville", "genre": "Adventure",
     "published_year": 1851, "price": 12.50, "in_stock": False, "pages": 635,
     "publisher": "Harper & Brothers"},
    {"title": "Wuthering Heights", "author": "Emily Bronte", "genre": "Gothic Fiction",
     "published_year": 1847, "price": 9.99, "in_stock": True, "pages": 342,
     "publisher": "Thomas Cautley Newby"},
    {"title": "The Midnight Library", "author": "Matt Haig", "genre": "Fiction",
     "published_year": 2020, "price": 16.99, "in_stock": True, "pages": 304,
     "publisher": "Canongate"},
    {"title": "Project Hail Mary", "author": "Andy Weir", "genre": "Science Fiction",
     "published_year": 2021, "price": 18.99, "in_stock": False, "pages": 476,
     "publisher": "Ballantine Books"},
    {"title": "Klara and the Sun", "author": "Kazuo Ishiguro", "genre": "Science Fiction",
     "published_year": 2021, "price": 17.50, "in_stock": True, "pages": 303,
     "publisher": "Faber & Faber"},
    {"title": "The Silmarillion", "author": "J.R.R. Tolkien", "genre": "Fantasy",
     "published_year": 1977, "price": 15.99, "in_stock": False, "pages": 365,
     "publisher": "George Allen & Unwin"},
]


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration independent of the environment."""
    return Config(
        query=QueryConfig(cancel_check_interval=1, max_limit=0),
        index=IndexConfig(max_compound_fields=8, planner="selectivity"),
    )


@pytest.fixture
def container() -> Generator[Container, None, None]:
    """Provide a fresh DI container for each test."""
    reset_container()
    c = Container()
    yield c
    c.clear()


@pytest.fixture
def collector_registry() -> CollectorRegistry:
    """Provide an isolated Prometheus registry."""
    return CollectorRegistry(auto_describe=True)


@pytest.fixture
def metrics_registry(collector_registry: CollectorRegistry) -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    return MetricsRegistry(registry=collector_registry)


@pytest.fixture
def store(test_config: Config, metrics_registry: MetricsRegistry) -> DocumentStore:
    """Provide an empty document store."""
    return DocumentStore(config=test_config, metrics=metrics_registry)


@pytest.fixture
def catalog() -> list[dict[str, Any]]:
    """Provide a private copy of the sample book catalog."""
    return copy.deepcopy(CATALOG)


@pytest.fixture
def books_store(store: DocumentStore, catalog: list[dict[str, Any]]) -> DocumentStore:
    """Provide a store loaded with the sample book catalog."""
    store.insert_many(catalog)
    return store


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "concurrency: Multi-threaded tests")
    config.addinivalue_line("markers", "slow: Slow tests")
