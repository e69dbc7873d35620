"""Tests for ``equiptrak.storage.descriptor``."""

from __future__ import annotations

import pytest

from equiptrak.core.enums import SortDirection
from equiptrak.core.errors import ValidationError
from equiptrak.storage.descriptor import QueryDescriptor


class TestQueryDescriptor:
    def test_defaults(self):
        descriptor = QueryDescriptor("companies")
        assert descriptor.select == ("*",)
        assert descriptor.selects_all
        assert descriptor.filters == {}
        assert not descriptor.paginated

    def test_select_string_becomes_tuple(self):
        assert QueryDescriptor("companies", select="company_name").select == ("company_name",)

    def test_order_directions_normalized(self):
        descriptor = QueryDescriptor("service_records", order={"service_date": "DESC", "id": "asc"})
        assert descriptor.order == {"service_date": SortDirection.DESC, "id": SortDirection.ASC}
        assert list(descriptor.order) == ["service_date", "id"]

    def test_invalid_direction(self):
        with pytest.raises(ValidationError, match="Invalid sort direction") as info:
            QueryDescriptor("companies", order={"company_name": "sideways"})
        assert info.value.field == "company_name"

    @pytest.mark.parametrize("name", ["limit", "offset"])
    @pytest.mark.parametrize("value", [-1, True, 2.5, "10"])
    def test_pagination_must_be_non_negative_int(self, name, value):
        with pytest.raises(ValidationError, match=f"{name} must be a non-negative integer"):
            QueryDescriptor("companies", **{name: value})

    def test_table_required(self):
        with pytest.raises(ValidationError, match="needs a table"):
            QueryDescriptor("")


class TestNormalized:
    def test_unpaginated_is_unchanged(self):
        descriptor = QueryDescriptor("companies", order={"company_name": "asc"})
        assert descriptor.normalized() is descriptor

    def test_single_reads_one_row(self):
        normalized = QueryDescriptor("companies", filters={"id": "a"}, single=True).normalized()
        assert normalized.limit == 1
        assert normalized.order == {"id": SortDirection.ASC}

    def test_paginated_gets_id_tiebreak(self):
        normalized = QueryDescriptor(
            "service_records", order={"service_date": "desc"}, limit=10, offset=20
        ).normalized()
        assert list(normalized.order.items()) == [
            ("service_date", SortDirection.DESC),
            ("id", SortDirection.ASC),
        ]

    def test_explicit_id_order_kept(self):
        normalized = QueryDescriptor("companies", order={"id": "desc"}, limit=5).normalized()
        assert normalized.order == {"id": SortDirection.DESC}

    def test_with_table(self):
        descriptor = QueryDescriptor("compressors", limit=3)
        assert descriptor.with_table("compressors_records").table == "compressors_records"
        assert descriptor.table == "compressors"
