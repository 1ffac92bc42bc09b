"""
API tests for the business-object endpoints.
Tests list, lookup, load, save and delete over HTTP with a recording executor.
"""

import json

from fastapi.testclient import TestClient

from bizbase.app import create_app
from bizbase.core.config import Settings
from bizbase.core.dependencies import get_executor, get_request_context
from bizbase.sql.executor import QueryResult


class TestListEndpoint:
    """Test the list endpoint"""

    def test_list_with_filter_and_count(self, client: TestClient, api_executor):
        api_executor.queue([{"OrderId": 1, "Status": "Active"}], [{"TotalCount": 25}])

        response = client.post(
            "/api/business/order/list",
            json={
                "filter": [{"field": "Status", "operator": "=", "value": "Active", "type": "string"}],
                "start": 0,
                "limit": 10,
            },
        )

        assert response.status_code == 200
        assert response.json() == {"records": [{"OrderId": 1, "Status": "Active"}], "recordCount": 25}
        _, params = api_executor.statements[0]
        assert params["ClientId"] == 5
        assert params["_limit"] == 10

    def test_list_without_body_uses_defaults(self, client: TestClient, api_executor):
        response = client.post("/api/business/order/list")
        assert response.status_code == 200
        _, params = api_executor.statements[0]
        assert params["_start"] == 0
        assert params["_limit"] == 100

    def test_where_alias_and_json_string_filter(self, client: TestClient, api_executor):
        response = client.post(
            "/api/business/order/list",
            json={
                "where": json.dumps([{"field": "Amount", "operator": ">", "value": 5}]),
                "limit": 0,
                "returnCount": False,
            },
        )
        assert response.status_code == 200
        assert response.json() == {"records": []}
        assert "Amount > @Amount" in api_executor.sql[0]

    def test_unknown_filter_operator_is_bad_request(self, client: TestClient, api_executor):
        response = client.post(
            "/api/business/order/list",
            json={"filter": [{"field": "Amount", "operator": "near", "value": 5}]},
        )
        assert response.status_code == 400
        assert "Unsupported filter operator" in response.json()["detail"]
        assert api_executor.statements == []

    def test_negative_limit_rejected(self, client: TestClient):
        response = client.post("/api/business/order/list", json={"limit": -1})
        assert response.status_code == 422

    def test_unknown_business_object(self, client: TestClient):
        response = client.post("/api/business/invoice/list")
        assert response.status_code == 404
        assert response.json()["detail"] == "Business object invoice not found."


class TestReadEndpoints:
    """Test lookup and load"""

    def test_lookup(self, client: TestClient, api_executor):
        api_executor.queue([{"value": 1, "label": "SO-1"}])
        response = client.get("/api/business/order/lookup")
        assert response.status_code == 200
        assert response.json() == [{"value": 1, "label": "SO-1"}]

    def test_load(self, client: TestClient, api_executor):
        api_executor.queue([{"CustomerId": 42, "Name": "Acme"}], [{"ForeignId": 3}], [])
        response = client.get("/api/business/customer/42")
        assert response.status_code == 200
        assert response.json() == {"CustomerId": 42, "Name": "Acme", "Tags": "3", "Channel": ""}

    def test_load_missing_row(self, client: TestClient, api_executor):
        api_executor.queue(QueryResult())
        response = client.get("/api/business/customer/404")
        assert response.status_code == 404

    def test_load_non_numeric_id(self, client: TestClient):
        response = client.get("/api/business/customer/abc")
        assert response.status_code == 422


class TestWriteEndpoints:
    """Test save and delete"""

    def test_insert(self, client: TestClient, api_executor):
        api_executor.queue([{"Id": 42}], [])
        response = client.put("/api/business/customer/0", json={"Name": "Foo", "Tags": "3,7"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"Id": 42}}
        assert api_executor.events[0] == "BEGIN"
        assert api_executor.events[-1] == "COMMIT"

    def test_update_outside_scope_is_forbidden(self, client: TestClient, api_executor):
        api_executor.queue([{"TenantId": 99}])
        response = client.put("/api/business/customer/42", json={"Name": "Foo"})
        assert response.status_code == 403
        assert api_executor.writes() == []

    def test_update_of_missing_row_is_not_found(self, client: TestClient, api_executor):
        api_executor.queue(QueryResult(), QueryResult(rowcount=0))
        response = client.put("/api/business/customer/404", json={"Name": "Foo", "Tags": "3"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Customer 404 not found."
        assert api_executor.events[-1] == "ROLLBACK"

    def test_delete_blocked_by_related_rows(self, client: TestClient, api_executor):
        api_executor.queue([{"TenantId": 5}], [{"RelatedCount": 2}])
        response = client.delete("/api/business/customer/42")
        assert response.status_code == 409
        assert response.json()["detail"] == "Customer is tied to 2 number of Order"

    def test_delete_outside_scope_is_forbidden(self, client: TestClient, api_executor):
        api_executor.queue([{"TenantId": 9}])
        response = client.delete("/api/business/customer/42")
        assert response.status_code == 403
        assert api_executor.writes() == []

    def test_delete(self, client: TestClient, api_executor):
        api_executor.queue([{"TenantId": 5}], QueryResult(rowcount=1))
        response = client.delete("/api/business/order/7")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"rowsAffected": 1}}


def test_requests_without_principal_are_rejected(test_settings, registry, api_executor):
    app = create_app(settings=test_settings, registry=registry)
    app.dependency_overrides[get_executor] = lambda: api_executor

    with TestClient(app) as test_client:
        response = test_client.post("/api/business/order/list")

    assert response.status_code == 401
    assert api_executor.statements == []


def test_slow_requests_are_logged(registry, api_executor, context, caplog):
    settings = Settings(
        database_url="sqlite+aiosqlite://",
        log_level="WARNING",
        slow_request_threshold_ms=-1,
        application_id="bizbase-tests",
    )
    app = create_app(settings=settings, registry=registry)
    app.dependency_overrides[get_executor] = lambda: api_executor
    app.dependency_overrides[get_request_context] = lambda: context

    with TestClient(app) as test_client:
        response = test_client.post("/api/business/order/list", json={"limit": 0})

    assert response.status_code == 200
    assert "Slow request: POST /api/business/order/list -> 200" in caplog.text
    assert "bizbase-tests" in caplog.text
