"""Integration tests that assert API writes reach the database.

These tests use Django's test client and direct SQL to validate that the
HTTP API creates and transitions order rows with the expected values,
including the row version and the stock decrement on acceptance.
"""

import pytest
from django.db import connection

from .conftest import BUYER_ID, PRODUCER_ID

CREATE_URL = "/api/orders/"


@pytest.mark.django_db
def test_create_then_accept_persists_row_and_stock(client, api_engine, make_product):
    product = make_product(stock=5, price_cents=1500)
    r = client.post(
        CREATE_URL,
        data={"product_id": product.pk, "quantity_requested": 2},
        content_type="application/json",
        HTTP_X_USER_ID=str(BUYER_ID),
    )
    assert r.status_code == 201
    code = r.json()["code"]

    with connection.cursor() as cur:
        cur.execute("select status, total_cents, row_version from orders where code = %s", [code])
        assert cur.fetchone() == ("PendingReview", 3000, 1)

    r = client.post(
        f"/api/orders/{code}/accept/",
        data={"row_version": 1},
        content_type="application/json",
        HTTP_X_PRODUCER_ID=str(PRODUCER_ID),
    )
    assert r.status_code == 200

    with connection.cursor() as cur:
        cur.execute("select status, row_version from orders where code = %s", [code])
        assert cur.fetchone() == ("AcceptedAwaitingPayment", 2)
        cur.execute("select stock from products where id = %s", [product.pk])
        assert cur.fetchone() == (3,)
