"""
Unit tests for mapping raw driver errors to readable messages.
"""

import json

import pytest

from bizbase.business.error_mapper import SqlErrorMapper

MAPPINGS = [
    {
        "pattern": "Violation of UNIQUE KEY constraint",
        "description": "${1} already exists.",
        "mappings": {"UQ_Order_OrderNumber": "Order number", "UQ_Tag_TagName": "Tag name"},
    },
    {
        "pattern": "FOREIGN KEY constraint",
        "description": "${1} is still in use.",
        "mappings": {"FK_Order_Customer": "Customer"},
    },
]


class FakeDBAPIError(Exception):
    def __init__(self, orig):
        super().__init__("wrapped")
        self.orig = orig


@pytest.fixture
def mapper():
    return SqlErrorMapper(mappings=MAPPINGS)


class TestSqlErrorMapper:
    def test_matching_pattern_and_key(self, mapper):
        message = "Violation of UNIQUE KEY constraint 'UQ_Order_OrderNumber'. Cannot insert duplicate key."
        assert mapper.map(message) == "Order number already exists."

    def test_second_pattern(self, mapper):
        message = "The DELETE statement conflicted with the REFERENCE FOREIGN KEY constraint \"FK_Order_Customer\"."
        assert mapper.map(message) == "Customer is still in use."

    def test_pattern_without_known_key_passes_through(self, mapper):
        message = "Violation of UNIQUE KEY constraint 'UQ_Other'."
        assert mapper.map(message) == message

    def test_unmatched_message_passes_through(self, mapper):
        assert mapper.map("Deadlock victim") == "Deadlock victim"

    def test_map_exception_prefers_driver_error(self, mapper):
        error = FakeDBAPIError(Exception("Violation of UNIQUE KEY constraint 'UQ_Tag_TagName'."))
        assert mapper.map_exception(error) == "Tag name already exists."

    def test_map_exception_without_message(self, mapper):
        assert mapper.map_exception(Exception()) == "Unknown error"

    def test_loads_file_lazily(self, tmp_path):
        path = tmp_path / "errors.json"
        path.write_text(json.dumps(MAPPINGS))
        mapper = SqlErrorMapper(file=str(path))
        assert len(mapper.get_mappings()) == 2
        assert mapper.map("Violation of UNIQUE KEY constraint 'UQ_Tag_TagName'") == "Tag name already exists."

    def test_missing_file_means_no_mappings(self, tmp_path, caplog):
        mapper = SqlErrorMapper(file=str(tmp_path / "missing.json"))
        assert mapper.map("anything") == "anything"
        assert "not found" in caplog.text
