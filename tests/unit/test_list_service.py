"""
Unit tests for list, lookup and load assembly in the business-object service.
Statements are captured by the recording executor instead of hitting a database.
"""

import pytest

from bizbase.business.context import RequestContext
from bizbase.business.schemas import ListRequest
from bizbase.business.service import BusinessObjectService
from bizbase.core.exceptions import QueryValidationError
from bizbase.sql.executor import QueryResult


def make_service(registry, name, executor, context, **kwargs):
    return registry.get(name).get_service(executor, context, registry, **kwargs)


def where_clause(sql):
    """WHERE line of a rendered statement"""
    return next(line for line in sql.splitlines() if line.startswith("WHERE "))


class TestFilteredList:
    async def test_filtered_paged_list_with_count(self, registry, executor, context):
        executor.queue([{"OrderId": 1, "Status": "Active"}], [{"TotalCount": 25}])
        service = make_service(registry, "Order", executor, context)

        result = await service.list(
            ListRequest(
                filter=[{"field": "Status", "operator": "=", "value": "Active", "type": "string"}],
                limit=10,
                start=0,
            )
        )

        assert result.records == [{"OrderId": 1, "Status": "Active"}]
        assert result.record_count == 25

        listing, params = executor.statements[0]
        assert listing.startswith("SELECT Main.*, [OrderTag].OrderTagCount AS OrderTagCount\nFROM vwOrderList Main")
        assert where_clause(listing) == (
            "WHERE Main.ClientId = @ClientId AND Main.IsDeleted = @IsDeleted AND Status = @Status"
        )
        assert listing.endswith("ORDER BY OrderDate DESC\nOFFSET @_start ROWS FETCH NEXT @_limit ROWS ONLY")
        assert params["ClientId"] == 5
        assert params["IsDeleted"] == 0
        assert params["Status"] == "Active"
        assert params["_start"] == 0
        assert params["_limit"] == 10

        count, _ = executor.statements[1]
        assert count.startswith("SELECT COUNT(1) AS TotalCount\nFROM vwOrderList Main")
        assert where_clause(count) == where_clause(listing)
        assert "ORDER BY" not in count
        assert "OFFSET" not in count

    async def test_relation_count_join_skips_deleted_rows(self, registry, executor, context):
        service = make_service(registry, "Order", executor, context)
        await service.list(ListRequest(limit=0))
        listing = executor.sql[0]
        assert (
            "LEFT OUTER JOIN (SELECT OrderId AS OrderTag_OrderId, COUNT(1) AS OrderTagCount "
            "FROM [OrderTag] WHERE IsDeleted = 0 GROUP BY OrderId) [OrderTag] "
            "ON [OrderTag].OrderTag_OrderId = Main.OrderId"
        ) in listing


class TestCountConsistency:
    async def test_unpaged_list_counts_returned_rows(self, registry, executor, context):
        rows = [{"OrderId": n} for n in range(1, 8)]
        executor.queue(rows)
        service = make_service(registry, "Order", executor, context)

        result = await service.list(ListRequest(limit=0))

        assert result.record_count == 7
        assert len(executor.statements) == 1
        assert "OFFSET" not in executor.sql[0]

    async def test_paged_and_unpaged_share_predicates(self, registry, executor, context):
        service = make_service(registry, "Order", executor, context)
        filters = [{"field": "Amount", "operator": ">", "value": 100}]
        await service.list(ListRequest(filter=filters, limit=20))
        await service.list(ListRequest(filter=filters, limit=0))
        paged_count, unpaged_listing = executor.sql[1], executor.sql[2]
        assert where_clause(paged_count) == where_clause(unpaged_listing)

    async def test_group_by_counts_groups(self, registry, executor, context):
        service = make_service(registry, "Order", executor, context)
        await service.list(ListRequest(group_by="Status", sort="Status", limit=10))
        listing, count = executor.sql
        assert "GROUP BY Status\nORDER BY Status" in listing
        assert count.startswith("SELECT COUNT(1) AS TotalCount FROM (SELECT 1 AS GroupRow")
        assert count.endswith("GROUP BY Status) AS Grouped")

    async def test_page_and_count_share_a_transaction(self, registry, executor, context):
        executor.queue([{"OrderId": 1}], [{"TotalCount": 3}])
        service = make_service(registry, "Order", executor, context)
        await service.list(ListRequest(limit=1))
        assert executor.events == ["BEGIN", "EXECUTE", "EXECUTE", "COMMIT"]

    async def test_count_can_be_skipped(self, registry, executor, context):
        service = make_service(registry, "Order", executor, context)
        result = await service.list(ListRequest(limit=10, return_count=False))
        assert result.record_count is None
        assert len(executor.statements) == 1
        assert "BEGIN" not in executor.events


class TestListOptions:
    async def test_include_exclude_and_is_active(self, registry, executor, context):
        registry.register("Product", {"useIsActive": True})
        service = make_service(registry, "Product", executor, context)

        await service.list(ListRequest(include="1,2", exclude=[3], limit=0))

        where = where_clause(executor.sql[0])
        assert "Main.ProductId IN (@ProductId_0, @ProductId_1)" in where
        assert "Main.ProductId NOT IN (" in where
        assert "Main.IsActive = @IsActive" in where
        assert executor.statements[0][1]["IsActive"] is True

    async def test_empty_include_emits_no_in(self, registry, executor, context):
        service = make_service(registry, "Order", executor, context)
        await service.list(ListRequest(include="", limit=0))
        assert "IN ()" not in executor.sql[0]
        assert "OrderId IN" not in executor.sql[0]

    async def test_or_filters_are_grouped(self, registry, executor, context):
        service = make_service(registry, "Order", executor, context)
        await service.list(
            ListRequest(
                filter=[
                    {"field": "Status", "operator": "=", "value": "Open"},
                    {"field": "Amount", "operator": ">", "value": 100},
                ],
                logical_operator="or",
                limit=0,
            )
        )
        assert where_clause(executor.sql[0]) == (
            "WHERE Main.ClientId = @ClientId AND Main.IsDeleted = @IsDeleted "
            "AND (Status = @Status OR Amount > @Amount)"
        )

    async def test_sort_is_sanitized(self, registry, executor, context):
        service = make_service(registry, "Order", executor, context)
        await service.list(ListRequest(sort="OrderDate DESC; DROP TABLE Users--", limit=10))
        assert "ORDER BY OrderDate DESC_ DROP TABLE Users__" in executor.sql[0]

    async def test_table_source_gets_audit_joins_and_qualified_filters(self, registry, executor, context):
        service = make_service(registry, "Customer", executor, context)
        await service.list(
            ListRequest(
                filter=[
                    {"field": "CreatedByUser", "operator": "contains", "value": "ann"},
                    {"field": "Name", "operator": "startsWith", "value": "A"},
                ],
                limit=0,
            )
        )
        listing = executor.sql[0]
        assert listing.startswith(
            "SELECT Main.*, Created_.CreatedByUser, Modified_.ModifiedByUser, Region.RegionName\nFROM Customer Main"
        )
        assert (
            "LEFT OUTER JOIN (SELECT UserId AS Created_UserId, UserName AS CreatedByUser FROM Security_User) "
            "Created_ ON Created_.Created_UserId = Main.CreatedByUserId"
        ) in listing
        assert (
            "LEFT OUTER JOIN (SELECT RegionName, RegionId FROM [Region] WHERE IsDeleted = 0) Region "
            "ON Region.RegionId = Main.RegionId"
        ) in listing
        assert "Created_.CreatedByUser LIKE @CreatedByUser" in listing
        assert "Main.Name LIKE @Name" in listing

    async def test_relation_constraints_do_not_collide_with_filters(self, registry, executor, context):
        registry.register(
            "Project",
            {"relations": [{"relation": "ProjectTag", "field": "TagId", "countInList": True, "where": {"Status": "Live"}}]},
        )
        service = make_service(registry, "Project", executor, context)
        await service.list(ListRequest(filter=[{"field": "Status", "operator": "=", "value": "Open"}], limit=0))

        listing, params = executor.statements[0]
        assert "Status = @_rel_Status" in listing
        assert "Status = @Status" in listing
        assert params["_rel_Status"] == "Live"
        assert params["Status"] == "Open"

    async def test_custom_list_statement(self, registry, executor, context):
        registry.register(
            "Invoice",
            {
                "listStatement": (
                    "SELECT Main.*, C.Name AS CustomerName FROM Invoice Main "
                    "JOIN Customer C ON C.CustomerId = Main.CustomerId WHERE Main.Total > 0"
                )
            },
        )
        service = make_service(registry, "Invoice", executor, context)
        await service.list(ListRequest(filter=[{"field": "Total", "operator": "<", "value": 50}], limit=5))
        listing, count = executor.sql
        assert listing.startswith("SELECT Main.*, C.Name AS CustomerName\nFROM Invoice Main")
        assert "Created_" not in listing
        assert where_clause(listing) == (
            "WHERE (Main.Total > 0) AND Main.ClientId = @ClientId AND Main.IsDeleted = @IsDeleted "
            "AND Main.Total < @Total"
        )
        assert where_clause(count) == where_clause(listing)


class TestScoping:
    async def test_non_tenant_table_without_soft_delete(self, registry, executor, context):
        service = make_service(registry, "Country", executor, context)
        await service.list(ListRequest(limit=0))
        listing = executor.sql[0]
        assert listing == "SELECT Main.*\nFROM Country Main"

    async def test_several_permitted_scopes(self, registry, executor):
        context = RequestContext(user_id=1, scope_id=5, permitted_scope_ids=(5, 6))
        service = make_service(registry, "Order", executor, context)
        await service.list(ListRequest(limit=0))
        assert "Main.ClientId IN (@ClientId_0, @ClientId_1)" in executor.sql[0]

    async def test_no_scope_means_no_tenant_filter(self, registry, executor):
        service = make_service(registry, "Order", executor, RequestContext(user_id=1))
        await service.list(ListRequest(limit=0))
        assert "ClientId" not in executor.sql[0]
        assert "Main.IsDeleted = @IsDeleted" in executor.sql[0]

    async def test_mysql_pagination(self, registry, mysql_executor, context):
        service = make_service(registry, "Order", mysql_executor, context)
        await service.list(ListRequest(limit=10, start=20))
        listing = mysql_executor.sql[0]
        assert "`OrderTag`" in listing
        assert listing.endswith("ORDER BY OrderDate DESC\nLIMIT :_start, :_limit")


class TestLookup:
    async def test_lookup_uses_display_field(self, registry, executor, context):
        executor.queue([{"value": 1, "label": "SO-1"}])
        service = make_service(registry, "Order", executor, context)
        rows = await service.lookup_list()
        assert rows == [{"value": 1, "label": "SO-1"}]
        assert executor.sql[0] == (
            "SELECT [OrderId] AS value, [OrderNumber] AS label\n"
            "FROM vwOrderList Main\n"
            "WHERE Main.ClientId = @ClientId AND Main.IsDeleted = @IsDeleted\n"
            "ORDER BY OrderDate DESC"
        )

    async def test_lookup_scope_for_non_tenant_table(self, registry, executor, context):
        service = make_service(registry, "Country", executor, context)
        await service.lookup_list(scope_id=3)
        sql, params = executor.statements[0]
        assert "WHERE ScopeId = @ScopeId" in sql
        assert params == {"ScopeId": 3}

    async def test_lookup_needs_a_label(self, registry, executor, context):
        registry.register("Widget", {})
        service = make_service(registry, "Widget", executor, context)
        with pytest.raises(QueryValidationError, match="No display field"):
            await service.lookup_list()

    async def test_custom_lookup_statement(self, registry, executor, context):
        registry.register("Status", {"lookupListStatement": "SELECT Code AS value, Name AS label FROM Status"})
        service = make_service(registry, "Status", executor, context)
        await service.lookup_list()
        assert executor.sql == ["SELECT Code AS value, Name AS label FROM Status"]


class TestLoad:
    async def test_load_folds_relations_and_multi_select(self, registry, executor, context):
        executor.queue(
            [{"CustomerId": 42, "Name": "Acme", "ClientId": 5}],
            [{"ForeignId": 3}, {"ForeignId": 7}],
            [{"Value": 1, "RowId": 101}, {"Value": 2, "RowId": 102}],
        )
        service = make_service(registry, "Customer", executor, context)

        row = await service.load(42)

        assert row == {"CustomerId": 42, "Name": "Acme", "ClientId": 5, "Tags": "3,7", "Channel": "1, 2"}
        load_sql, load_params = executor.statements[0]
        assert load_sql == (
            "SELECT Main.*\nFROM Customer Main\n"
            "WHERE Main.ClientId = @ClientId AND Main.IsDeleted = @IsDeleted AND Main.CustomerId = @CustomerId"
        )
        assert load_params == {"ClientId": 5, "IsDeleted": 0, "CustomerId": 42}
        assert executor.sql[1] == (
            "SELECT [TagId] AS ForeignId FROM [CustomerTag] WHERE [CustomerId] = @CustomerId AND IsDeleted = 0"
        )
        assert executor.sql[2] == (
            "SELECT Channel AS Value, CustomerChannelId AS RowId FROM CustomerChannel "
            "WHERE CustomerId = @CustomerId AND IsDeleted = 0"
        )

    async def test_relation_field_resolves_through_foreign_table(self, registry, executor, context):
        executor.queue([{"OrderId": 9}], [])
        service = make_service(registry, "Order", executor, context)
        row = await service.load(9)
        assert row == {"OrderId": 9, "OrderTags": ""}
        assert "FROM vwOrderList Main" in executor.sql[0]
        assert executor.sql[1].startswith("SELECT [TagId] AS ForeignId FROM [OrderTag]")

    async def test_missing_row_returns_none(self, registry, executor, context):
        executor.queue(QueryResult())
        service = make_service(registry, "Customer", executor, context)
        assert await service.load(404) is None
        assert len(executor.statements) == 1

    async def test_load_without_relations(self, registry, executor, context):
        executor.queue([{"OrderId": 9}])
        service = make_service(registry, "Order", executor, context)
        row = await service.load(9, relations=False)
        assert row == {"OrderId": 9}
        assert len(executor.statements) == 1

    async def test_before_load_hook(self, registry, executor, context):
        seen = []

        class AuditedOrderService(BusinessObjectService):
            async def before_load(self, id):
                seen.append(id)

        registry.register("Order", registry.descriptor("Order"), service_cls=AuditedOrderService)
        service = make_service(registry, "Order", executor, context)
        await service.load(9)
        assert seen == [9]
