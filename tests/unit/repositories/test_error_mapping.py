"""Tests for translating failures into the repository error taxonomy."""

import asyncio

import pytest

from tandem.domain import DatabaseError, EntityNotFoundError, ValidationError
from tandem.repositories import map_error, translate_storage_error
from tandem.storage import ErrorKind, StorageError


@pytest.mark.parametrize(
    ("kind", "expected"),
    [
        (ErrorKind.CONSTRAINT, ValidationError),
        (ErrorKind.NOT_FOUND, EntityNotFoundError),
        (ErrorKind.PERMANENT, DatabaseError),
        (ErrorKind.TRANSIENT, DatabaseError),
    ],
)
def test_translate_storage_error_by_kind(kind, expected):
    error = translate_storage_error(
        StorageError("backend said no", kind),
        operation="save",
        entity_type="focus_area",
        context={"id": "fa-1"},
    )

    assert type(error) is expected
    assert error.entity_type == "focus_area"
    assert error.metadata["error_kind"] == kind.value
    assert error.metadata["id"] == "fa-1"


def test_map_error_returns_repository_errors_unchanged():
    original = ValidationError("bad", entity_type="challenge")

    assert map_error(original, operation="save", entity_type="challenge") is original


def test_map_error_wraps_unknown_exceptions():
    error = map_error(KeyError("user_id"), operation="find_where", entity_type="challenge")

    assert isinstance(error, DatabaseError)
    assert error.operation == "find_where"
    assert error.metadata["error_type"] == "KeyError"


def test_map_error_reports_timeouts():
    error = map_error(asyncio.TimeoutError(), operation="save", entity_type="challenge")

    assert isinstance(error, DatabaseError)
    assert error.message == "save timed out"
