"""Tests for the TekmetricClient facade and its resource helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import FakeSession, make_response, page_payload
from tekmetric_api_client import (
    AggregationError,
    ClientConfig,
    PermanentError,
    TekmetricClient,
    collected_at_least,
)
from tekmetric_api_client.client import _camel, _format_param


def sent_params(session, index=-1):
    return session.requests[index]["params"]


class TestConstruction:
    def test_environment_selects_base_url(self):
        client = TekmetricClient(client_id="a", client_secret="b", environment="Production", session=FakeSession())
        assert client.config.base_url == "https://shop.tekmetric.com"

    def test_sandbox_is_default(self):
        client = TekmetricClient(client_id="a", client_secret="b", session=FakeSession())
        assert client.config.base_url == "https://sandbox.tekmetric.com"

    def test_rejects_unknown_environment(self):
        with pytest.raises(ValueError):
            TekmetricClient(client_id="a", client_secret="b", environment="staging")

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            TekmetricClient(client_id="a")

    def test_config_and_settings_are_exclusive(self):
        config = ClientConfig(base_url="https://sandbox.tekmetric.com", client_id="a", client_secret="b")
        with pytest.raises(ValueError):
            TekmetricClient(config=config, client_id="other")

    @pytest.mark.parametrize(
        "setting",
        [
            {"timeout": 5},
            {"max_retries": 0},
            {"max_backoff_seconds": 1},
            {"rate_per_second": 2},
            {"burst": 4},
            {"default_shop_id": 3},
        ],
    )
    def test_config_rejects_every_individual_setting(self, setting):
        config = ClientConfig(base_url="https://sandbox.tekmetric.com", client_id="a", client_secret="b")
        with pytest.raises(ValueError, match="not both"):
            TekmetricClient(config=config, session=FakeSession(), **setting)

    def test_unset_settings_use_config_defaults(self):
        client = TekmetricClient(client_id="a", client_secret="b", max_retries=1, session=FakeSession())
        assert client.config.max_retries == 1
        assert client.config.timeout_seconds == 30
        assert client.config.burst == 10
        assert client.config.default_shop_id == 0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TEKMETRIC_CLIENT_ID", "env-id")
        monkeypatch.setenv("TEKMETRIC_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("TEKMETRIC_DEFAULT_SHOP_ID", "3")
        client = TekmetricClient.from_env(session=FakeSession())
        assert client.config.client_id == "env-id"
        assert client.config.default_shop_id == 3

    def test_context_manager_closes_session(self):
        session = FakeSession()
        with TekmetricClient(client_id="a", client_secret="b", session=session):
            pass
        assert session.closed


class TestPaging:
    """Test single-page requests and whole-collection traversal."""

    def test_get_page_params(self, client, session):
        session.responses.append(make_response(200, page_payload([{"id": 1}], number=2)))
        page = client.get_page("/api/v1/customers", page=2, size=25, shop_id=3)
        assert page.content == [{"id": 1}]
        assert page.number == 2
        assert sent_params(session) == {"shop": 3, "page": 2, "size": 25}

    @pytest.mark.parametrize("size, expected", [(500, 100), (0, 100), (-5, 100), (100, 100), (1, 1)])
    def test_page_size_is_capped(self, client, session, size, expected):
        session.responses.append(make_response(200, page_payload([])))
        client.get_page("/api/v1/customers", size=size)
        assert sent_params(session)["size"] == expected

    def test_fetch_all(self, client, session):
        session.responses.extend(
            [
                make_response(200, page_payload([1, 2], number=0)),
                make_response(200, page_payload([3, 4], number=1)),
                make_response(200, page_payload([5], number=2, last=True)),
            ]
        )
        items, meta = client.fetch_all("/api/v1/vehicles", shop_id=2, size=2)
        assert items == [1, 2, 3, 4, 5]
        assert meta.pages_traversed == 3
        assert [r["params"]["page"] for r in session.requests] == [0, 1, 2]

    def test_fetch_until(self, client, session):
        session.responses.extend(
            [
                make_response(200, page_payload(list(range(10)), number=0)),
                make_response(200, page_payload(list(range(10, 20)), number=1)),
            ]
        )
        items, meta = client.fetch_until(
            "/api/v1/repair-orders", collected_at_least(15), shop_id=2, size=10
        )
        assert len(items) == 20
        assert meta.pages_traversed == 2
        assert len(session.requests) == 2

    def test_generic_fetch_ignores_default_shop(self, session, clock, sleeps):
        session.token_responses.append(make_response(200, {"access_token": "t", "scope": "3"}))
        client = TekmetricClient(
            client_id="a",
            client_secret="b",
            default_shop_id=3,
            session=session,
            clock=clock,
            sleep=sleeps.append,
        )
        session.responses.append(make_response(200, page_payload([1], last=True)))
        client.fetch_all("/api/v1/shops")
        assert "shop" not in sent_params(session)

    def test_fetch_all_wraps_request_failure(self, client, session):
        session.responses.extend(
            [make_response(200, page_payload([1, 2], number=0)), make_response(403)]
        )
        with pytest.raises(AggregationError) as exc_info:
            client.fetch_all("/api/v1/jobs", shop_id=2)
        assert isinstance(exc_info.value.underlying, PermanentError)
        assert exc_info.value.metadata.records_fetched == 2


class TestResources:
    """Test the typed helpers build the expected requests."""

    def test_customer_filters_are_camel_cased(self, client, session):
        session.responses.append(make_response(200, page_payload([])))
        client.get_customers(
            shop_id=2,
            search="smith",
            ok_for_marketing=True,
            updated_date_start=date(2024, 1, 5),
            customer_type_id=None,
        )
        params = sent_params(session)
        assert session.requests[-1]["url"].endswith("/api/v1/customers")
        assert params["search"] == "smith"
        assert params["okForMarketing"] == "true"
        assert params["updatedDateStart"] == "2024-01-05T00:00:00Z"
        assert "customerTypeId" not in params
        assert params["shop"] == 2

    def test_default_shop_is_used(self, session, clock, sleeps):
        session.token_responses.append(make_response(200, {"access_token": "t", "scope": "3"}))
        client = TekmetricClient(
            client_id="a",
            client_secret="b",
            default_shop_id=3,
            session=session,
            clock=clock,
            sleep=sleeps.append,
        )
        session.responses.append(make_response(200, page_payload([])))
        client.get_vehicles()
        assert sent_params(session)["shop"] == 3

    def test_repair_orders_exclude_deleted_by_default(self, client, session):
        session.responses.extend([make_response(200, page_payload([])), make_response(200, page_payload([]))])
        client.get_repair_orders(shop_id=2)
        assert sent_params(session)["repairOrderStatusId"] == [1, 2, 3, 4, 5, 6]
        client.get_repair_orders(shop_id=2, repair_order_status_id=None)
        assert "repairOrderStatusId" not in sent_params(session)

    def test_appointments_exclude_deleted_by_default(self, client, session):
        session.responses.append(make_response(200, page_payload([])))
        client.get_appointments(shop_id=2)
        assert sent_params(session)["includeDeleted"] == "false"

    def test_inventory_requires_shop(self, client, session):
        with pytest.raises(ValueError):
            client.get_inventory(part_type_id=1)
        assert session.requests == []

    def test_inventory_sends_part_type(self, client, session):
        session.responses.append(make_response(200, page_payload([])))
        client.get_inventory(part_type_id=2, shop_id=3)
        assert sent_params(session)["partTypeId"] == 2

    def test_get_shop_checks_scope(self, client, session):
        session.responses.append(make_response(200, {"id": 2, "name": "Main St"}))
        assert client.get_shop(2)["name"] == "Main St"
        assert session.requests[-1]["url"].endswith("/api/v1/shops/2")

    def test_shop_ids_reflect_token_scope(self, client):
        assert client.shop_ids == frozenset()
        client.authenticate()
        assert client.shop_ids == frozenset({"2", "3"})


class TestParamFormatting:
    @pytest.mark.parametrize(
        "name, expected",
        [("search", "search"), ("ok_for_marketing", "okForMarketing"), ("part_type_id", "partTypeId")],
    )
    def test_camel(self, name, expected):
        assert _camel(name) == expected

    def test_datetime_is_rendered_in_utc(self):
        eastern = timezone(timedelta(hours=-5))
        assert _format_param(datetime(2024, 3, 1, 7, 30, tzinfo=eastern)) == "2024-03-01T12:30:00Z"
        assert _format_param(datetime(2024, 3, 1, 7, 30)) == "2024-03-01T07:30:00Z"

    def test_sequences_and_bools(self):
        assert _format_param((True, 2)) == ["true", 2]
        assert _format_param(False) == "false"


class TestFilterValidation:
    """Test that bad list filters are rejected before anything is sent."""

    def test_sort_direction_is_normalised(self, client, session):
        session.responses.append(make_response(200, page_payload([])))
        client.get_vehicles(shop_id=2, sort_direction="desc")
        assert sent_params(session)["sortDirection"] == "DESC"

    @pytest.mark.parametrize(
        "method, kwargs",
        [
            ("get_repair_orders", {"sort_direction": "sideways"}),
            ("get_repair_orders", {"sort": "bogus"}),
            ("get_repair_orders", {"repair_order_status_id": [99]}),
            ("get_repair_orders", {"repair_order_status_id": [0, 2]}),
            ("get_customers", {"sort": "lastName,phone"}),
            ("get_customers", {"customer_type_id": 3}),
            ("get_jobs", {"sort": "createdDate"}),
            ("get_jobs", {"repair_order_status_id": [7]}),
            ("get_employees", {"sort_direction": "up"}),
        ],
    )
    def test_invalid_filters_raise_without_request(self, client, session, method, kwargs):
        with pytest.raises(ValueError):
            getattr(client, method)(shop_id=2, **kwargs)
        assert session.requests == []
        assert session.posts == []

    def test_invalid_part_type(self, client, session):
        with pytest.raises(ValueError, match="partTypeId"):
            client.get_inventory(part_type_id=3, shop_id=2)
        assert session.requests == []

    @pytest.mark.parametrize(
        "method, kwargs, key, expected",
        [
            ("get_repair_orders", {"sort": "customer.lastName", "repair_order_status_id": [7]}, "sort", "customer.lastName"),
            ("get_customers", {"sort": "lastName, email", "customer_type_id": 2}, "customerTypeId", 2),
            ("get_jobs", {"sort": "authorizedDate"}, "sort", "authorizedDate"),
            ("get_vehicles", {"sort": "anything"}, "sort", "anything"),
        ],
    )
    def test_valid_filters_are_sent(self, client, session, method, kwargs, key, expected):
        session.responses.append(make_response(200, page_payload([])))
        getattr(client, method)(shop_id=2, **kwargs)
        assert sent_params(session)[key] == expected
