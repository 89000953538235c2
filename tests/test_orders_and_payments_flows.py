from decimal import Decimal

import pytest

from app.core.errors import (
    Conflict,
    EmptyOrder,
    InvalidAmount,
    OrderNotFound,
    PaymentFailed,
    PaymentNotAuthorized,
    PaymentProviderError,
    PaymentProviderUnavailable,
    PermissionDenied,
    TenantUnavailable,
)
from app.models.order import Order
from app.models.user import UserRole
from app.payments.base import ProviderRefund
from app.services.event_bus import event_bus
from app.services.order_events import ORDER_PAYMENT_CHANGED
from app.services.orders import OrderDraft, create_orders, list_orders, split_evenly, to_money
from app.services.payments import PaymentReconciliationService, resolve_mobile_wallet
from tests.fixtures_data import SINGLE_ITEM_ORDER_PAYLOAD, TWO_ITEM_ORDER_PAYLOAD, auth_headers


class RecordingProvider:
    """Wraps a provider and records every call made to it."""

    def __init__(self, inner, fail_with=None):
        self.inner = inner
        self.fail_with = fail_with
        self.calls = []
        self.name = inner.name

    def _call(self, name, **kwargs):
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with
        return getattr(self.inner, name)(**kwargs)

    def create_intent(self, **kwargs):
        return self._call("create_intent", **kwargs)

    def retrieve_intent(self, intent_id):
        return self._call("retrieve_intent", intent_id=intent_id)

    def refund(self, **kwargs):
        return self._call("refund", **kwargs)

    def list_intents(self, **kwargs):
        return self._call("list_intents", **kwargs)


class DecliningRefundProvider(RecordingProvider):
    """Refunds come back from the provider with an unsuccessful status."""

    def __init__(self, inner, refund_status):
        super().__init__(inner)
        self.refund_status = refund_status

    def refund(self, *, intent_id, amount_minor=None):
        self.calls.append("refund")
        return ProviderRefund(
            id="re_declined", status=self.refund_status, amount=amount_minor or 0, payment_intent_id=intent_id
        )


@pytest.fixture
def captured_payment_events():
    events = []
    unsubscribe = event_bus.subscribe(ORDER_PAYMENT_CHANGED, events.append)
    yield events
    unsubscribe()


def _draft(payload):
    address = payload.get("delivery_address") or {}
    return OrderDraft(
        items=payload["items"],
        delivery_fee=payload.get("delivery_fee", 0),
        tax=payload.get("tax", 0),
        claimed_subtotal=payload.get("subtotal"),
        claimed_total=payload.get("total"),
        order_type=payload.get("order_type", "pickup"),
        delivery_street=address.get("street"),
        delivery_city=address.get("city"),
        delivery_postal_code=address.get("postal_code"),
        delivery_phone=address.get("phone"),
        notes=payload.get("notes"),
    )


@pytest.fixture
def checkout(db_session, make_user, make_tenant):
    tenant = make_tenant()
    customer = make_user(UserRole.CUSTOMER, default_tenant_id=tenant.id)
    batch = create_orders(db_session, tenant=tenant, customer=customer, draft=_draft(TWO_ITEM_ORDER_PAYLOAD))
    return tenant, customer, batch


def test_split_evenly_keeps_the_remainder_on_last_share():
    assert split_evenly(Decimal("3.01"), 2) == [Decimal("1.50"), Decimal("1.51")]
    assert sum(split_evenly(Decimal("10.00"), 3)) == Decimal("10.00")
    assert split_evenly(Decimal("5.00"), 0) == []


def test_to_money_treats_garbage_as_zero():
    assert to_money("abc") == Decimal("0.00")
    assert to_money(True) == Decimal("0.00")
    assert to_money("NaN") == Decimal("0.00")
    assert to_money("12.345") == Decimal("12.35")


def test_two_item_checkout_creates_one_order_per_item(checkout, db_session):
    tenant, customer, batch = checkout

    assert len(batch.orders) == 2
    assert batch.subtotal == Decimal("35.00")
    assert batch.delivery_fee == Decimal("3.01")
    assert batch.total == Decimal("38.01")
    assert len({order.order_group_id for order in batch.orders}) == 1
    assert len({order.order_number for order in batch.orders}) == 2

    first, second = batch.orders
    assert to_money(first.total) == Decimal("26.50")
    assert to_money(second.total) == Decimal("11.51")
    assert sum(to_money(order.total) for order in batch.orders) == batch.total
    assert first.items[0]["options"] == {"accompaniments": ["Riz", "Salade"], "drinks": ["Bissap"]}
    assert second.items[0]["quantity"] == 1
    assert second.items[0]["options"]["drinks"] == ["Gingembre", "Bouye"]
    assert all(order.tenant_id == tenant.id and order.customer_id == customer.id for order in batch.orders)
    assert all(order.status == "pending" and order.payment_status == "pending" for order in batch.orders)


def test_quantity_and_price_are_coerced(db_session, make_user, make_tenant):
    tenant = make_tenant()
    customer = make_user()
    draft = OrderDraft(
        items=[
            {"name": "Pastels", "quantity": 0, "unit_price": 10},
            {"quantity": 3, "price": "2.5"},
            {"name": "Fataya", "quantity": "2", "unit_price": "-4"},
        ]
    )

    batch = create_orders(db_session, tenant=tenant, customer=customer, draft=draft)

    first, second, third = batch.orders
    assert first.items[0]["quantity"] == 1
    assert to_money(first.subtotal) == Decimal("10.00")
    assert third.items[0]["unit_price"] == 0.0
    assert second.items[0]["name"] == "Item"
    assert to_money(second.subtotal) == Decimal("7.50")


def test_empty_order_is_rejected(db_session, make_user, make_tenant):
    with pytest.raises(EmptyOrder):
        create_orders(db_session, tenant=make_tenant(), customer=make_user(), draft=OrderDraft(items=[]))
    assert db_session.query(Order).count() == 0


def test_orders_need_a_tenant(db_session, make_user):
    with pytest.raises(TenantUnavailable):
        create_orders(db_session, tenant=None, customer=make_user(), draft=_draft(SINGLE_ITEM_ORDER_PAYLOAD))


def test_list_orders_clamps_pagination(checkout, db_session):
    tenant, _customer, _batch = checkout

    page = list_orders(db_session, tenant_id=tenant.id, page=0, limit=1000)

    assert page.page == 1
    assert page.limit == 100
    assert page.total == 2


def test_group_intent_binds_every_order_in_one_commit(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)

    result = service.create_intent(principal=customer, tenant=tenant, amount="38.01", order_group_id=batch.order_group_id)

    assert result.amount_minor == 3801
    assert sorted(result.order_ids) == sorted(order.id for order in batch.orders)
    for order in batch.orders:
        db_session.refresh(order)
        assert order.payment_intent_id == result.intent_id
        assert order.payment_method == "stripe_card"
    intent = payment_provider.retrieve_intent(result.intent_id)
    assert intent.metadata["order_group_id"] == batch.order_group_id
    assert intent.metadata["customer_id"] == str(customer.id)


def test_confirm_marks_group_paid_once(checkout, db_session, payment_provider, captured_payment_events):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, "succeeded")

    first = service.confirm_payment(principal=customer, intent_id=intent_id)
    second = service.confirm_payment(principal=customer, intent_id=intent_id)

    assert first.payment_status == "paid"
    assert len(first.updated_order_ids) == 2
    assert second.updated_order_ids == []
    assert len(captured_payment_events) == 2
    assert all(order.payment_status == "paid" for order in db_session.query(Order).all())


def test_paying_one_order_of_a_group_leaves_sibling_pending(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    first, second = sorted(batch.orders, key=lambda order: order.id)
    service = PaymentReconciliationService(db_session, payment_provider)
    result = service.create_intent(principal=customer, tenant=tenant, amount=first.total, order_id=first.id)
    payment_provider.set_status(result.intent_id, "succeeded")

    confirmation = service.confirm_payment(principal=customer, intent_id=result.intent_id)

    assert "order_group_id" not in payment_provider.retrieve_intent(result.intent_id).metadata
    assert confirmation.updated_order_ids == [first.id]
    db_session.refresh(first)
    db_session.refresh(second)
    assert first.payment_status == "paid"
    assert second.payment_status == "pending"
    assert second.payment_intent_id is None


def test_confirm_by_another_customer_is_denied(checkout, db_session, payment_provider, make_user):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, "succeeded")

    with pytest.raises(PaymentNotAuthorized):
        service.confirm_payment(principal=make_user(), intent_id=intent_id)

    assert all(order.payment_status == "pending" for order in db_session.query(Order).all())


@pytest.mark.parametrize("status", ["processing", "requires_action"])
def test_pending_intent_leaves_orders_pending(checkout, db_session, payment_provider, status):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, status)

    result = service.confirm_payment(principal=customer, intent_id=intent_id)

    assert result.pending is True
    assert result.as_dict()["message"] == "Payment is still being processed"


def test_requires_payment_method_is_a_failure_without_mutation(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id

    with pytest.raises(PaymentFailed):
        service.confirm_payment(principal=customer, intent_id=intent_id)

    assert all(order.payment_status == "pending" for order in db_session.query(Order).all())


def test_canceled_intent_marks_orders_failed(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, "canceled")

    with pytest.raises(PaymentFailed):
        service.confirm_payment(principal=customer, intent_id=intent_id)

    assert all(order.payment_status == "failed" for order in db_session.query(Order).all())


def test_intent_for_paid_orders_is_conflict(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    for order in batch.orders:
        order.payment_status = "paid"
    db_session.commit()

    with pytest.raises(Conflict):
        PaymentReconciliationService(db_session, payment_provider).create_intent(
            principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
        )


def test_invalid_amount_is_rejected_before_provider(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    provider = RecordingProvider(payment_provider)

    with pytest.raises(InvalidAmount):
        PaymentReconciliationService(db_session, provider).create_intent(
            principal=customer, tenant=tenant, amount="-5", order_group_id=batch.order_group_id
        )

    assert provider.calls == []


def test_missing_provider_is_service_unavailable(checkout, db_session):
    tenant, customer, batch = checkout

    with pytest.raises(PaymentProviderUnavailable) as exc:
        PaymentReconciliationService(db_session, None).create_intent(
            principal=customer, tenant=tenant, amount=1, order_group_id=batch.order_group_id
        )

    assert exc.value.status_code == 503


def test_intent_for_other_customers_group_is_not_found(checkout, db_session, payment_provider, make_user):
    tenant, _customer, batch = checkout

    with pytest.raises(OrderNotFound):
        PaymentReconciliationService(db_session, payment_provider).create_intent(
            principal=make_user(), tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
        )


def test_provider_failure_leaves_orders_untouched(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    provider = RecordingProvider(payment_provider, fail_with=PaymentProviderError("card_declined"))

    with pytest.raises(PaymentProviderError):
        PaymentReconciliationService(db_session, provider).create_intent(
            principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
        )

    assert all(order.payment_intent_id is None for order in db_session.query(Order).all())


def test_unknown_mobile_wallet_falls_back(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout

    result = PaymentReconciliationService(db_session, payment_provider).create_mobile_pay_intent(
        principal=customer,
        tenant=tenant,
        amount=38.01,
        wallet="samsung_pay",
        order_group_id=batch.order_group_id,
    )

    assert resolve_mobile_wallet("GOOGLE_PAY") == "google_pay"
    assert result.payment_method == "stripe_apple_pay"
    assert payment_provider.retrieve_intent(result.intent_id).payment_method_types == ["card"]


def test_customer_refund_is_denied_before_provider_call(checkout, db_session, payment_provider):
    tenant, customer, batch = checkout
    provider = RecordingProvider(payment_provider)
    service = PaymentReconciliationService(db_session, provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    provider.calls.clear()

    with pytest.raises(PermissionDenied):
        service.refund_payment(principal=customer, intent_id=intent_id)

    assert provider.calls == []


def test_admin_refund_marks_orders_refunded_keeps_order_status(checkout, db_session, payment_provider, make_user):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, "succeeded")
    service.confirm_payment(principal=customer, intent_id=intent_id)

    result = service.refund_payment(principal=make_user(UserRole.PLATFORM_ADMIN), intent_id=intent_id)

    assert result["amount_minor"] == 3801
    orders = db_session.query(Order).all()
    assert all(order.payment_status == "refunded" for order in orders)
    assert all(order.status == "pending" for order in orders)


def test_partial_refund_without_order_keeps_payment_statuses(checkout, db_session, payment_provider, make_user):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, "succeeded")
    service.confirm_payment(principal=customer, intent_id=intent_id)

    result = service.refund_payment(principal=make_user(UserRole.PLATFORM_ADMIN), intent_id=intent_id, amount="1.00")

    assert result["amount_minor"] == 100
    assert result["order_ids"] == []
    assert len(payment_provider.refunds) == 1
    assert [order.payment_status for order in db_session.query(Order).order_by(Order.id).all()] == ["paid", "paid"]


def test_partial_refund_for_one_order_leaves_sibling_paid(checkout, db_session, payment_provider, make_user):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, "succeeded")
    service.confirm_payment(principal=customer, intent_id=intent_id)
    first, second = sorted(batch.orders, key=lambda order: order.id)

    service.refund_payment(
        principal=make_user(UserRole.PLATFORM_ADMIN), intent_id=intent_id, order_id=first.id, amount=first.total
    )

    db_session.refresh(first)
    db_session.refresh(second)
    assert first.payment_status == "refunded"
    assert second.payment_status == "paid"


@pytest.mark.parametrize("refund_status", ["failed", "canceled"])
def test_unsuccessful_refund_leaves_orders_paid(checkout, db_session, payment_provider, make_user, refund_status):
    tenant, customer, batch = checkout
    provider = DecliningRefundProvider(payment_provider, refund_status)
    service = PaymentReconciliationService(db_session, provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    payment_provider.set_status(intent_id, "succeeded")
    service.confirm_payment(principal=customer, intent_id=intent_id)

    with pytest.raises(PaymentFailed) as exc:
        service.refund_payment(principal=make_user(UserRole.PLATFORM_ADMIN), intent_id=intent_id)

    assert exc.value.details["provider_status"] == refund_status
    assert all(order.payment_status == "paid" for order in db_session.query(Order).all())


def test_refund_with_unrelated_order_is_not_found(checkout, db_session, payment_provider, make_user):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id
    for order in batch.orders:
        order.payment_intent_id = "pi_other"
    db_session.commit()

    with pytest.raises(OrderNotFound):
        service.refund_payment(
            principal=make_user(UserRole.PLATFORM_ADMIN), intent_id=intent_id, order_id=batch.orders[0].id
        )


def test_list_payments_joins_orders_and_customers(checkout, db_session, payment_provider, make_user):
    tenant, customer, batch = checkout
    service = PaymentReconciliationService(db_session, payment_provider)
    intent_id = service.create_intent(
        principal=customer, tenant=tenant, amount=38.01, order_group_id=batch.order_group_id
    ).intent_id

    listing = service.list_payments(principal=make_user(UserRole.PLATFORM_ADMIN), limit=10)

    assert listing["meta"]["total"] == 1
    entry = listing["data"][0]
    assert entry["id"] == intent_id
    assert entry["amount"] == 38.01
    assert len(entry["orders"]) == 2
    assert entry["orders"][0]["customer"]["email"] == customer.email


def test_list_payments_is_admin_only(db_session, payment_provider, make_user):
    with pytest.raises(PermissionDenied):
        PaymentReconciliationService(db_session, payment_provider).list_payments(principal=make_user())


def test_order_checkout_over_http(client, make_user, make_tenant):
    tenant = make_tenant(delivery_fee=Decimal("2.00"))
    customer = make_user(UserRole.CUSTOMER, default_tenant_id=tenant.id)
    payload = dict(TWO_ITEM_ORDER_PAYLOAD)
    payload.pop("delivery_fee")

    response = client.post("/api/orders", json=payload, headers=auth_headers(customer, tenant.id))

    assert response.status_code == 201
    body = response.json()
    assert body["total_orders"] == 2
    assert body["delivery_fee"] == 2.0
    assert body["total"] == 37.0


def test_customer_cannot_read_other_customers_order(client, make_user, make_tenant):
    tenant = make_tenant()
    owner_of_order = make_user(UserRole.CUSTOMER, default_tenant_id=tenant.id)
    snoop = make_user(UserRole.CUSTOMER, default_tenant_id=tenant.id)
    created = client.post("/api/orders", json=SINGLE_ITEM_ORDER_PAYLOAD, headers=auth_headers(owner_of_order, tenant.id))
    order_id = created.json()["orders"][0]["id"]

    response = client.get(f"/api/orders/{order_id}", headers=auth_headers(snoop, tenant.id))

    assert response.status_code == 404


def test_owner_moves_order_through_lifecycle_over_http(client, make_user, make_tenant):
    owner = make_user(UserRole.TENANT_OWNER)
    tenant = make_tenant(owner)
    customer = make_user(UserRole.CUSTOMER, default_tenant_id=tenant.id)
    created = client.post("/api/orders", json=SINGLE_ITEM_ORDER_PAYLOAD, headers=auth_headers(customer, tenant.id))
    order_id = created.json()["orders"][0]["id"]

    confirmed = client.post(f"/api/orders/{order_id}/transitions", json={"event": "confirm"}, headers=auth_headers(owner))
    rejected = client.patch(f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=auth_headers(owner))

    assert confirmed.status_code == 200
    assert confirmed.json()["order"]["status"] == "confirmed"
    assert rejected.status_code == 400
    assert rejected.json()["code"] == "InvalidStatus"


def test_customer_refund_over_http_is_forbidden(client, make_user, make_tenant):
    tenant = make_tenant()
    customer = make_user(UserRole.CUSTOMER, default_tenant_id=tenant.id)

    response = client.post(
        "/api/payments/refund",
        json={"payment_intent_id": "pi_anything"},
        headers=auth_headers(customer, tenant.id),
    )

    assert response.status_code == 403
