"""Service tests for recording and deleting sales"""

import pytest
from datetime import date
from paydesk.domain.exceptions import InvalidAmountError, NotFoundError
from paydesk.domain.ledger import completed_total
from paydesk.domain.models import SaleLine
from paydesk.infrastructure.database import models as orm
from paydesk.infrastructure.database.repositories import NotificationRepository


def test_installment_sale_plan_sums_to_total(sales_service, ledger, make_customer, make_product):
    customer_id = make_customer()
    product_id = make_product(price_cents=100001, stock=5)

    sale = sales_service.record_sale(
        customer_id,
        [SaleLine(product_id=product_id, quantity=1, unit_price_cents=100001)],
        "installments",
        number_of_installments=3,
        first_due_date=date(2024, 4, 15),
    )

    installments = ledger.list_by_sale(sale.id)
    assert [i.amount_cents for i in installments] == [33333, 33333, 33335]
    assert sum(i.amount_cents for i in installments) == sale.total_cents == 100001
    assert [i.due_date for i in installments] == [date(2024, 4, 15), date(2024, 5, 15), date(2024, 6, 15)]
    assert all(i.status == "pending" for i in installments)
    assert sale.payment_status == "unpaid"
    assert sale.installment_amount_cents == 33333


def test_advance_installments_are_prepaid(sales_service, ledger, make_customer):
    customer_id = make_customer()

    sale = sales_service.record_sale(
        customer_id,
        [SaleLine(product_id=None, product_name="Custom sofa", quantity=1, unit_price_cents=90000)],
        "installments",
        number_of_installments=3,
        advance_installments=1,
    )

    first, second, third = ledger.list_by_sale(sale.id)
    assert first.status == "paid"
    assert first.paid_amount_cents == 30000
    assert second.status == third.status == "pending"

    transactions = ledger.list_transactions(first.id)
    assert len(transactions) == 1
    assert transactions[0].payment_reference == "Advance installment"
    assert completed_total(transactions) == first.paid_amount_cents
    assert sales_service.get_sale(sale.id).payment_status == "partial"


def test_default_first_due_date_is_next_month(sales_service, ledger, make_customer):
    """Clock is 2024-03-15, so the plan starts 2024-04-15"""
    sale = sales_service.record_sale(
        make_customer(),
        [SaleLine(product_id=None, product_name="Chair", quantity=2, unit_price_cents=5000)],
        "installments",
        number_of_installments=2,
    )

    assert [i.due_date for i in ledger.list_by_sale(sale.id)] == [date(2024, 4, 15), date(2024, 5, 15)]


def test_customer_payment_window_anchors_due_dates(sales_service, ledger, make_customer):
    """Window '1 to 10': every due date on the 10th, starting next month"""
    sale = sales_service.record_sale(
        make_customer(payment_window="1 to 10"),
        [SaleLine(None, 1, 30000, "Sofa")],
        "installments",
        number_of_installments=3,
        payment_period="20 to 30",
    )

    assert [i.due_date for i in ledger.list_by_sale(sale.id)] == [date(2024, 4, 10), date(2024, 5, 10), date(2024, 6, 10)]
    assert sale.period_type == "monthly"


def test_sale_payment_period_used_and_saved_when_customer_has_none(sales_service, ledger, make_customer, session_factory):
    customer_id = make_customer()

    sale = sales_service.record_sale(
        customer_id,
        [SaleLine(None, 1, 20000, "Desk")],
        "installments",
        number_of_installments=2,
        payment_period="20 a 30",
    )

    assert [i.due_date for i in ledger.list_by_sale(sale.id)] == [date(2024, 4, 30), date(2024, 5, 30)]
    with session_factory() as db:
        assert db.get(orm.Customer, customer_id).payment_window == "20 to 30"


def test_weekly_plan(sales_service, ledger, make_customer):
    sale = sales_service.record_sale(
        make_customer(payment_window="1 to 10"),
        [SaleLine(None, 1, 30000, "Bike")],
        "installments",
        number_of_installments=3,
        first_due_date=date(2024, 3, 20),
        period_type="weekly",
    )

    assert sale.period_type == "weekly"
    assert [i.due_date for i in ledger.list_by_sale(sale.id)] == [date(2024, 3, 20), date(2024, 3, 27), date(2024, 4, 3)]


def test_cash_sale_has_no_plan(sales_service, ledger, make_product):
    product_id = make_product(stock=10)

    sale = sales_service.record_sale(
        None, [SaleLine(product_id=product_id, quantity=2, unit_price_cents=45000)], "cash"
    )

    assert sale.payment_status == "paid"
    assert sale.total_cents == 90000
    assert sale.period_type is None
    assert ledger.list_by_sale(sale.id) == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"items": [], "payment_type": "cash"},
        {"items": [SaleLine(None, 0, 1000, "Lamp")], "payment_type": "cash"},
        {"items": [SaleLine(None, 1, 1000, "Lamp")], "payment_type": "barter"},
        {"items": [SaleLine(None, 1, 1000, "Lamp")], "payment_type": "installments"},
        {"items": [SaleLine(None, 1, 1000, "Lamp")], "payment_type": "installments", "number_of_installments": 2, "advance_installments": 3},
        {"items": [SaleLine(None, 1, 2, "Sticker")], "payment_type": "installments", "number_of_installments": 3},
        {"items": [SaleLine(None, 1, 1000, "Lamp")], "payment_type": "installments", "number_of_installments": 2, "period_type": "daily"},
        {"items": [SaleLine(None, 1, 1000, "Lamp")], "payment_type": "installments", "number_of_installments": 2, "payment_period": "5 to 15"},
    ],
)
def test_invalid_sales_rejected(sales_service, kwargs):
    with pytest.raises(InvalidAmountError):
        sales_service.record_sale(None, **kwargs)


def test_unknown_customer_or_product(sales_service, make_customer):
    with pytest.raises(NotFoundError):
        sales_service.record_sale(9999, [SaleLine(None, 1, 1000, "Lamp")], "cash")
    with pytest.raises(NotFoundError):
        sales_service.record_sale(make_customer(), [SaleLine(9999, 1, 1000)], "cash")


def test_sale_consumes_stock_and_raises_low_stock_alert(sales_service, make_product, session_factory, clock, channel):
    product_id = make_product(name="Blender", stock=3)
    clock.advance(minutes=1)

    sales_service.record_sale(None, [SaleLine(product_id, 2, 45000)], "cash")

    with session_factory() as db:
        assert db.get(orm.Product, product_id).stock == 1
        active = NotificationRepository(db, clock).list_active()
    assert [n.message_key for n in active] == [f"stock_low|{product_id}"]
    assert channel.recent()[0].meta["currentStock"] == 1


def test_delete_sale_cascades(sales_service, ledger, make_customer, session_factory):
    sale = sales_service.record_sale(
        make_customer(),
        [SaleLine(None, 1, 60000, "TV")],
        "installments",
        number_of_installments=2,
        advance_installments=1,
    )
    installment_ids = [i.id for i in ledger.list_by_sale(sale.id)]

    sales_service.delete_sale(sale.id)

    with pytest.raises(NotFoundError):
        sales_service.get_sale(sale.id)
    with session_factory() as db:
        assert db.query(orm.Installment).filter(orm.Installment.id.in_(installment_ids)).count() == 0
        assert db.query(orm.PaymentTransaction).filter(orm.PaymentTransaction.sale_id == sale.id).count() == 0
        assert db.query(orm.SaleItem).filter(orm.SaleItem.sale_id == sale.id).count() == 0

    with pytest.raises(NotFoundError):
        sales_service.delete_sale(sale.id)


def test_restock(sales_service, make_product, clock):
    product_id = make_product(stock=1)
    clock.advance(hours=1)

    product = sales_service.restock(product_id, 4)

    assert product.stock == 5
    assert product.updated_at == clock()
    with pytest.raises(InvalidAmountError):
        sales_service.restock(product_id, 0)
    with pytest.raises(NotFoundError):
        sales_service.restock(404, 1)
