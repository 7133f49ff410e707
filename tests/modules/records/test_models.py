"""Tests for modules/records/models.py."""

import pytest
from pydantic import ValidationError

from modules.records.models import CollectionRecord, MemberInput, MemberUpdate, QueryDescriptor


class TestCollectionRecord:
    def test_access(self):
        record = CollectionRecord(id="1", data={"name": "Ana"})
        assert record["name"] == "Ana"
        assert record.get("name") == "Ana"
        assert record.get("age") is None
        assert record.get("age", 0) == 0
        assert "name" in record
        assert list(record.keys()) == ["name"]

    def test_missing_key_raises(self):
        with pytest.raises(KeyError):
            CollectionRecord(id="1")["name"]


class TestQueryDescriptor:
    def test_builders_return_copies(self):
        base = QueryDescriptor(collection="usuarios")
        query = base.where("age", ">=", 18).ordered_by("created_at", descending=True)

        assert base.filters == []
        assert base.order_by == []
        assert query.filters[0].field == "age"
        assert query.filters[0].op == ">="
        assert query.order_by[0].descending is True

    def test_rejects_bad_limit_and_operator(self):
        with pytest.raises(ValidationError):
            QueryDescriptor(collection="usuarios", limit=0)
        with pytest.raises(ValidationError):
            QueryDescriptor(collection="usuarios").where("age", "~=", 1)

    def test_requires_collection(self):
        with pytest.raises(ValidationError):
            QueryDescriptor(collection="")


class TestMemberModels:
    def test_member_input_validation(self):
        member = MemberInput(name="Ana", email="ana@example.com", age="25", specialty="Contaduría")
        assert member.age == 25
        with pytest.raises(ValidationError):
            MemberInput(name="Ana", email="ana@example.com", age=15, specialty="Software")

    def test_member_update_is_partial(self):
        assert MemberUpdate(age=30).model_dump(exclude_none=True) == {"age": 30}
