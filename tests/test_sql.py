"""SQL synthesis tests for list queries and mutation strategies."""

import re

import pytest
from sqlalchemy.types import Integer

from mssql_bridge.errors import ValidationFailure
from mssql_bridge.models import Column, ListRequest, MutationStrategy
from mssql_bridge.sql import (
    build_delete,
    build_get,
    build_insert,
    build_list,
    build_update,
    insert_strategy,
    parse_list_request,
    quote_ident,
)

from .conftest import make_object


class TestQuoteIdent:
    def test_brackets(self):
        assert quote_ident("Name") == "[Name]"

    def test_closing_bracket_is_doubled(self):
        assert quote_ident("a]b") == "[a]]b]"

    def test_colon_is_escaped_for_text_clauses(self):
        assert quote_ident("a:b") == "[a\\:b]"


class TestParseListRequest:
    def test_defaults(self, employees):
        request = parse_list_request(employees, {})
        assert request.filters == {}
        assert request.order_column is None
        assert request.limit == -1
        assert request.offset == 0

    def test_known_columns_become_typed_filters(self, employees):
        request = parse_list_request(employees, {"Name": "Ann", "Active": "1"})
        assert request.filters == {"Name": "Ann", "Active": True}

    def test_unknown_columns_are_ignored(self, employees):
        request = parse_list_request(employees, {"Salary": "1", "Name; DROP TABLE x": "1"})
        assert request.filters == {}

    def test_order_parsing(self, employees):
        request = parse_list_request(employees, {"order": "Name.desc"})
        assert request.order_column == "Name"
        assert request.descending is True

        request = parse_list_request(employees, {"order": "Name"})
        assert request.order_column == "Name"
        assert request.descending is False

    def test_unknown_order_column_is_dropped(self, employees):
        request = parse_list_request(employees, {"order": "Salary.desc"})
        assert request.order_column is None
        assert request.descending is False

    def test_negative_offset_is_clamped(self, employees):
        assert parse_list_request(employees, {"offset": "-5"}).offset == 0

    def test_non_numeric_paging_falls_back_to_defaults(self, employees):
        request = parse_list_request(employees, {"limit": "all", "offset": "x"})
        assert request.limit == -1
        assert request.offset == 0

    def test_paging_reads_the_leading_integer(self, employees):
        request = parse_list_request(employees, {"limit": "1.5", "offset": " 4th"})
        assert request.limit == 1
        assert request.offset == 4

    def test_malformed_filter_value_is_a_validation_failure(self, employees):
        with pytest.raises(ValidationFailure):
            parse_list_request(employees, {"Id": "abc"})


class TestBuildList:
    def test_plain_list_orders_by_primary_key_without_paging(self, employees):
        stmt = build_list(employees, ListRequest())
        assert stmt.sql == "SELECT * FROM [dbo].[Employees] ORDER BY [Id] ASC"
        assert stmt.params == {}

    def test_object_without_key_orders_by_first_column(self, active_view):
        stmt = build_list(active_view, ListRequest())
        assert stmt.sql.endswith("ORDER BY [Id] ASC")

        no_key = make_object(
            columns=(Column(name="Code", data_type="nvarchar"), Column(name="Id", data_type="int")),
            primary_key=(),
            identity_column=None,
        )
        assert build_list(no_key, ListRequest()).sql.endswith("ORDER BY [Code] ASC")

    def test_filters_are_bound_not_interpolated(self, employees):
        stmt = build_list(employees, ListRequest(filters={"Name": "O'Brien", "Active": True}))
        assert "O'Brien" not in stmt.sql
        assert "WHERE [Name] = :f0 AND [Active] = :f1" in stmt.sql
        assert stmt.params == {"f0": "O'Brien", "f1": True}

    def test_requested_order(self, employees):
        stmt = build_list(employees, ListRequest(order_column="Name", descending=True))
        assert stmt.sql.endswith("ORDER BY [Name] DESC")

    def test_unlimited_with_zero_offset_has_no_paging_clause(self, employees):
        stmt = build_list(employees, ListRequest(limit=-1, offset=0))
        assert "OFFSET" not in stmt.sql
        assert "FETCH" not in stmt.sql

    def test_offset_only(self, employees):
        stmt = build_list(employees, ListRequest(offset=3))
        assert stmt.sql.endswith("ORDER BY [Id] ASC OFFSET :offset ROWS")
        assert stmt.params == {"offset": 3}

    def test_limit_and_offset(self, employees):
        stmt = build_list(employees, ListRequest(limit=2, offset=1))
        assert stmt.sql.endswith("OFFSET :offset ROWS FETCH NEXT :limit ROWS ONLY")
        assert stmt.params == {"offset": 1, "limit": 2}
        assert isinstance(stmt.types["limit"], Integer)

    def test_clause_binds_every_parameter(self, employees):
        clause = build_list(employees, ListRequest(filters={"Name": "Ann"}, limit=5)).clause()
        assert set(clause._bindparams) == {"f0", "offset", "limit"}


class TestBuildGet:
    def test_select_by_key(self, employees):
        stmt = build_get(employees, 7)
        assert stmt.sql == "SELECT * FROM [dbo].[Employees] WHERE [Id] = :key"
        assert stmt.params == {"key": 7}

    def test_composite_key_is_rejected(self):
        obj = make_object(primary_key=("Id", "Name"))
        with pytest.raises(ValidationFailure):
            build_get(obj, 1)


class TestDirectStrategy:
    def test_insert_outputs_inserted_row(self, employees):
        stmt = build_insert(employees, {"Name": "Ann", "Active": True})
        assert stmt.sql == (
            "INSERT INTO [dbo].[Employees] ([Name], [Active]) OUTPUT inserted.* VALUES (:v0, :v1)"
        )
        assert stmt.params == {"v0": "Ann", "v1": True}

    def test_insert_skips_identity_and_unknown_fields(self, employees):
        stmt = build_insert(employees, {"Id": 99, "Name": "Ann", "Bogus": 1})
        assert "[Id]" not in stmt.sql.split("OUTPUT")[0]
        assert "Bogus" not in stmt.sql
        assert stmt.params == {"v0": "Ann"}

    def test_insert_without_fields_uses_default_values(self, employees):
        stmt = build_insert(employees, {})
        assert stmt.sql == "INSERT INTO [dbo].[Employees] OUTPUT inserted.* DEFAULT VALUES"

    def test_update_outputs_inserted_row(self, employees):
        stmt = build_update(employees, 3, {"Name": "Bo", "Id": 4})
        assert stmt.sql == "UPDATE [dbo].[Employees] SET [Name] = :v0 OUTPUT inserted.* WHERE [Id] = :key"
        assert stmt.params == {"v0": "Bo", "key": 3}

    def test_update_without_fields_is_rejected(self, employees):
        with pytest.raises(ValidationFailure, match="No updatable fields"):
            build_update(employees, 3, {"Id": 3, "Unknown": 1})

    def test_delete_outputs_deleted_row(self, employees):
        stmt = build_delete(employees, 3)
        assert stmt.sql == "DELETE FROM [dbo].[Employees] OUTPUT deleted.* WHERE [Id] = :key"


class TestIdentityReselectStrategy:
    @pytest.fixture
    def obj(self):
        return make_object(has_enabled_trigger=True, strategy=MutationStrategy.IDENTITY_RESELECT)

    def test_insert_reselects_by_scope_identity(self, obj):
        stmt = build_insert(obj, {"Name": "Ann"})
        assert "OUTPUT" not in stmt.sql
        assert "INSERT INTO [dbo].[Employees] ([Name]) VALUES (:v0);" in stmt.sql
        assert "SELECT * FROM [dbo].[Employees] WHERE [Id] = SCOPE_IDENTITY();" in stmt.sql
        assert stmt.sql.startswith("SET NOCOUNT ON;")

    def test_update_reselects_by_key(self, obj):
        stmt = build_update(obj, 5, {"Name": "Bo"})
        assert "OUTPUT" not in stmt.sql
        assert stmt.sql.endswith("SELECT * FROM [dbo].[Employees] WHERE [Id] = :key;")

    def test_delete_stages_without_copying_identity(self, obj):
        stmt = build_delete(obj, 5)
        assert "OUTPUT inserted.*" not in stmt.sql
        assert "[Id] + 0 AS [Id]" in stmt.sql
        assert "OUTPUT deleted.[Id], deleted.[Name], deleted.[Active] INTO #stage_" in stmt.sql


class TestKeyReselectStrategy:
    def test_insert_with_supplied_key_reselects_by_it(self, audit_log):
        payload = {"EntryId": "6f1c", "Message": "hi", "CreatedAt": "2024-01-01T00:00:00"}
        assert insert_strategy(audit_log, payload) is MutationStrategy.KEY_RESELECT

        stmt = build_insert(audit_log, payload)
        assert "OUTPUT" not in stmt.sql
        assert stmt.sql.endswith("SELECT * FROM [dbo].[AuditLog] WHERE [EntryId] = :v0;")
        assert stmt.params["v0"] == "6f1c"

    def test_insert_without_key_falls_back_to_staging(self, audit_log):
        payload = {"Message": "hi", "CreatedAt": "2024-01-01T00:00:00"}
        assert insert_strategy(audit_log, payload) is MutationStrategy.STAGING

        stmt = build_insert(audit_log, payload)
        holder = re.search(r"#stage_[0-9a-f]{32}", stmt.sql).group(0)
        assert f"SELECT TOP 0 [EntryId], [Message], [CreatedAt] INTO {holder} FROM [dbo].[AuditLog];" in stmt.sql
        assert (
            "INSERT INTO [dbo].[AuditLog] ([Message], [CreatedAt]) "
            f"OUTPUT inserted.[EntryId], inserted.[Message], inserted.[CreatedAt] "
            f"INTO {holder} ([EntryId], [Message], [CreatedAt]) VALUES (:v0, :v1);"
        ) in stmt.sql
        assert f"SELECT * FROM {holder};" in stmt.sql
        assert stmt.sql.endswith(f"DROP TABLE {holder};")

    def test_staging_holder_is_unique_per_statement(self, audit_log):
        first = build_insert(audit_log, {"Message": "a"})
        second = build_insert(audit_log, {"Message": "b"})
        holders = {re.search(r"#stage_\w+", s.sql).group(0) for s in (first, second)}
        assert len(holders) == 2

    def test_delete_stages(self, audit_log):
        stmt = build_delete(audit_log, "6f1c")
        assert "DELETE FROM [dbo].[AuditLog] OUTPUT deleted.[EntryId]" in stmt.sql
        assert "WHERE [EntryId] = :key;" in stmt.sql


class TestStagingStrategy:
    def test_insert_on_keyless_trigger_table_stages(self):
        obj = make_object(
            name="Events",
            primary_key=(),
            identity_column=None,
            has_enabled_trigger=True,
            strategy=MutationStrategy.STAGING,
        )
        stmt = build_insert(obj, {"Name": "x"})
        assert "OUTPUT inserted.[Id], inserted.[Name], inserted.[Active] INTO #stage_" in stmt.sql
        assert "SCOPE_IDENTITY" not in stmt.sql
