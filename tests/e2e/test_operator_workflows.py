"""
E2E tests for the shop operator's day, driven through the HTTP API.

Workflows:
- financed sale with an advance payment, overdue follow-up and collection
- stock running out after a sale, alert dismissed, restock re-arms it
- reminder dismissed in the morning does not reappear until tomorrow
"""

import pytest
from fastapi.testclient import TestClient


@pytest.mark.integration
def test_financed_sale_through_collection(client: TestClient, make_customer, clock):
    """
    Sale of $900 in 3 with one paid up front; the second installment
    goes overdue, is alerted once, then collected.
    """
    response = client.post(
        "/v1/sales",
        json={
            "customer_id": make_customer("Marta Gomez"),
            "payment_type": "installments",
            "items": [{"product_name": "Fridge", "quantity": 1, "unit_price_cents": 90000}],
            "number_of_installments": 3,
            "advance_installments": 1,
            "first_due_date": "2024-02-01",
        },
    )
    assert response.status_code == 201
    sale_id = response.json()["sale_id"]
    assert client.get(f"/v1/sales/{sale_id}").json()["payment_status"] == "partial"

    first, second, third = client.get(f"/v1/sales/{sale_id}/installments").json()
    assert first["status"] == "paid"
    assert second["due_date"] == "2024-03-01"

    scheduler = client.app.state.scheduler
    report = scheduler.tick()
    assert report.overdue_created == 1
    assert report.upcoming_created == 1  # third installment due 2024-04-01
    assert scheduler.tick().overdue_created == 0

    alerts = [n for n in client.get("/v1/notifications").json() if n["type"] == "alert"]
    assert len(alerts) == 1
    assert alerts[0]["message_key"] == f"overdue|{second['installment_id']}"
    assert alerts[0]["category"] == "client"

    response = client.post(f"/v1/installments/{second['installment_id']}/payments", json={"amount_cents": 30000})
    assert response.json()["installment"]["status"] == "paid"
    client.post(f"/v1/installments/{third['installment_id']}/payments", json={"amount_cents": 30000})
    assert client.get(f"/v1/sales/{sale_id}").json()["payment_status"] == "paid"

    # Collected installments are not alerted again the next day
    clock.advance(days=1)
    client.post("/v1/notifications/clear")
    report = scheduler.tick()
    assert report.overdue_created == 0
    assert report.upcoming_created == 0


@pytest.mark.integration
def test_low_stock_alert_and_restock(client: TestClient, make_product, clock):
    product_id = make_product(name="Toaster", price_cents=25000, stock=2, category="Kitchen")
    clock.advance(minutes=5)

    client.post(
        "/v1/sales",
        json={"payment_type": "cash", "items": [{"product_id": product_id, "quantity": 1, "unit_price_cents": 25000}]},
    )
    stock_alerts = [n for n in client.get("/v1/notifications").json() if n["category"] == "stock"]
    assert len(stock_alerts) == 1
    assert stock_alerts[0]["type"] == "attention"

    client.delete(f"/v1/notifications/{stock_alerts[0]['notification_id']}")

    # Selling the last unit without a restock does not re-alert
    clock.advance(days=1)
    client.post(
        "/v1/sales",
        json={"payment_type": "cash", "items": [{"product_id": product_id, "quantity": 1, "unit_price_cents": 25000}]},
    )
    assert client.get("/v1/notifications").json() == []

    clock.advance(minutes=1)
    client.post(f"/v1/products/{product_id}/restock", json={"quantity": 1})
    clock.advance(minutes=1)
    client.post(
        "/v1/sales",
        json={"payment_type": "cash", "items": [{"product_id": product_id, "quantity": 1, "unit_price_cents": 25000}]},
    )
    assert [n["message_key"] for n in client.get("/v1/notifications").json()] == [f"stock_low|{product_id}"]


@pytest.mark.integration
def test_dismissed_reminder_waits_until_tomorrow(client: TestClient, make_customer, clock):
    client.post(
        "/v1/sales",
        json={
            "customer_id": make_customer("Pedro Ruiz"),
            "payment_type": "installments",
            "items": [{"product_name": "Bike", "quantity": 1, "unit_price_cents": 40000}],
            "number_of_installments": 1,
            "first_due_date": "2024-03-25",
        },
    )
    scheduler = client.app.state.scheduler
    assert scheduler.tick().upcoming_created == 1

    reminder = client.get("/v1/notifications").json()[0]
    client.post("/v1/notifications/dismiss-today", json={"message_key": reminder["message_key"]})

    clock.advance(hours=4)
    assert scheduler.tick().upcoming_created == 0
    assert client.get("/v1/notifications").json() == []

    clock.advance(days=1)
    assert scheduler.tick().upcoming_created == 1
