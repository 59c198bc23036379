import pytest

from .conftest import BUYER_ID, PRODUCER_ID

DETAIL_URL = "/api/orders/{code}/"
LIST_URL = "/api/orders/"
PRODUCER_LIST_URL = "/api/orders/producer/"


@pytest.mark.django_db
def test_get_order_by_code_returns_200_and_payload(client, api_engine, make_product):
    order = api_engine.create(BUYER_ID, make_product(price_cents=700).pk, 2)
    r = client.get(DETAIL_URL.format(code=order.code), HTTP_X_USER_ID=str(BUYER_ID))
    assert r.status_code == 200
    body = r.json()
    assert body["code"] == order.code
    assert body["status"] == "PendingReview"
    assert body["total_cents"] == 1400
    assert body["row_version"] == 1

    r = client.get(DETAIL_URL.format(code=order.code), HTTP_X_PRODUCER_ID=str(PRODUCER_ID))
    assert r.status_code == 200


@pytest.mark.django_db
def test_get_order_not_found_returns_404(client, api_engine):
    r = client.get(DETAIL_URL.format(code="ORD-MISSING"), HTTP_X_USER_ID=str(BUYER_ID))
    assert r.status_code == 404
    assert r.json()["detail"] == "ORDER_NOT_FOUND"


@pytest.mark.django_db
def test_get_someone_elses_order_returns_403(client, api_engine, make_product):
    order = api_engine.create(BUYER_ID, make_product().pk, 1)
    r = client.get(DETAIL_URL.format(code=order.code), HTTP_X_USER_ID=str(BUYER_ID + 1))
    assert r.status_code == 403
    r = client.get(DETAIL_URL.format(code=order.code))
    assert r.status_code == 401


@pytest.mark.django_db
def test_list_orders_returns_paginated_array(client, api_engine, make_product):
    product = make_product()
    for _ in range(3):
        api_engine.create(BUYER_ID, product.pk, 1)
    api_engine.create(BUYER_ID + 1, product.pk, 1)

    r = client.get(LIST_URL, {"page": 1, "page_size": 2}, HTTP_X_USER_ID=str(BUYER_ID))
    assert r.status_code == 200
    body = r.json()
    assert (body["count"], body["page"], body["page_size"]) == (3, 1, 2)
    assert len(body["results"]) == 2
    assert all({"code", "status", "total_cents", "row_version"} <= set(x) for x in body["results"])

    r = client.get(PRODUCER_LIST_URL, HTTP_X_PRODUCER_ID=str(PRODUCER_ID))
    assert r.status_code == 200
    assert r.json()["count"] == 4


@pytest.mark.django_db
def test_producer_list_requires_producer_identity(client, api_engine):
    r = client.get(PRODUCER_LIST_URL, HTTP_X_USER_ID=str(BUYER_ID))
    assert r.status_code == 401
