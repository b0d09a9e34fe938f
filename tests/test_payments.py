"""
Tests for payment receipt reconciliation.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlmodel import select

from apps.api.services.orders import OrderStateMachine
from apps.api.services.payments import IProofStore, PaymentReconciler
from apps.core.exceptions import (
    DependencyUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotPaymentReadyError,
    ValidationError,
)
from apps.db.models.receipt import PaymentReceipt


class StaticProofStore(IProofStore):
    """Proof store knowing a fixed set of references."""

    def __init__(self, known=()):
        self.known = set(known)

    def exists(self, proof_ref: str) -> bool:
        return proof_ref in self.known


class UnreachableProofStore(IProofStore):
    def exists(self, proof_ref: str) -> bool:
        raise ConnectionError("storage timed out")


@pytest.fixture
def payment_made_order(session, plan):
    """Pay-per-image order the customer reported as paid."""
    machine = OrderStateMachine(session)
    order = machine.create("customer-1", None, 3, price=Decimal("7.50"))
    machine.transition(order.id, "approve", "staff")
    machine.transition(order.id, "mark_sent", "staff")
    machine.transition(order.id, "view", "customer")
    return machine.transition(order.id, "report_payment", "customer")


class TestSubmitReceipt:
    """Test receipt submission."""

    def test_submit_receipt(self, session, payment_made_order):
        receipt = PaymentReconciler(session).submit_receipt(
            payment_made_order.id,
            "customer-1",
            proof_ref="receipts/abc.jpg",
            amount=Decimal("7.50"),
            payment_method="bank_transfer",
            transaction_reference="TRX-991",
            paid_on=date(2024, 5, 2),
        )

        assert receipt.status == "submitted"
        assert receipt.order_id == payment_made_order.id
        assert receipt.currency == "USD"
        assert receipt.transaction_reference == "TRX-991"

    def test_submit_requires_payment_made(self, session, plan):
        order = OrderStateMachine(session).create("customer-1", None, 1, price=Decimal("2.50"))

        with pytest.raises(OrderNotPaymentReadyError):
            PaymentReconciler(session).submit_receipt(order.id, "customer-1", proof_ref="r.jpg")

        assert session.exec(select(PaymentReceipt)).all() == []

    def test_submit_for_foreign_order(self, session, payment_made_order):
        with pytest.raises(NotFoundError):
            PaymentReconciler(session).submit_receipt(payment_made_order.id, "customer-2")

    def test_submit_validates_method_and_amount(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)

        with pytest.raises(ValidationError):
            reconciler.submit_receipt(payment_made_order.id, "customer-1", payment_method="crypto")
        with pytest.raises(ValidationError):
            reconciler.submit_receipt(payment_made_order.id, "customer-1", amount="-3")

    def test_unknown_proof_reference(self, session, payment_made_order):
        reconciler = PaymentReconciler(session, proof_store=StaticProofStore({"known.jpg"}))

        with pytest.raises(ValidationError) as exc_info:
            reconciler.submit_receipt(payment_made_order.id, "customer-1", proof_ref="missing.jpg")

        assert "proof_ref" in exc_info.value.details["fields"]

    def test_proof_store_unavailable(self, session, payment_made_order):
        """An unreachable store fails the submission without writing."""
        reconciler = PaymentReconciler(session, proof_store=UnreachableProofStore())

        with pytest.raises(DependencyUnavailableError) as exc_info:
            reconciler.submit_receipt(payment_made_order.id, "customer-1", proof_ref="a.jpg")

        assert exc_info.value.status_code == 503
        assert session.exec(select(PaymentReceipt)).all() == []


class TestReviewReceipt:
    """Test staff confirmation and rejection."""

    def test_confirm_moves_order_to_payment_confirmed(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)
        receipt = reconciler.submit_receipt(payment_made_order.id, "customer-1", proof_ref="a.jpg")

        confirmed = reconciler.confirm(receipt.id, "staff-1", note="Matched bank statement")

        assert confirmed.status == "confirmed"
        assert confirmed.reviewed_by == "staff-1"
        assert confirmed.reviewed_at is not None
        session.refresh(payment_made_order)
        assert payment_made_order.status == "payment_confirmed"

        history = OrderStateMachine(session).history(payment_made_order.id)
        assert history[-1].trigger == "confirm_payment"
        assert history[-1].actor_id == "staff-1"

    def test_second_receipt_cannot_be_confirmed(self, session, payment_made_order):
        """Confirming the second of two receipts finds the order already confirmed."""
        reconciler = PaymentReconciler(session)
        first = reconciler.submit_receipt(payment_made_order.id, "customer-1", proof_ref="a.jpg")
        second = reconciler.submit_receipt(payment_made_order.id, "customer-1", proof_ref="b.jpg")

        reconciler.confirm(first.id, "staff-1")

        with pytest.raises(OrderNotPaymentReadyError):
            reconciler.confirm(second.id, "staff-1")

        session.refresh(second)
        assert second.status == "submitted"
        confirmed = session.exec(
            select(PaymentReceipt).where(PaymentReceipt.status == "confirmed")
        ).all()
        assert len(confirmed) == 1

    @pytest.mark.parametrize("failure", [
        InvalidTransitionError("Order changed while confirming", trigger="confirm_payment"),
        RuntimeError("connection dropped"),
    ])
    def test_failed_order_update_rolls_back_receipt(self, session, payment_made_order, monkeypatch, failure):
        """The receipt stays submitted when the order half of a confirmation fails."""
        reconciler = PaymentReconciler(session)
        receipt = reconciler.submit_receipt(payment_made_order.id, "customer-1", proof_ref="a.jpg")

        def failing_advance(*args, **kwargs):
            raise failure

        monkeypatch.setattr(OrderStateMachine, "_advance", failing_advance)

        with pytest.raises(type(failure)):
            reconciler.confirm(receipt.id, "staff-1", note="Matched")

        session.expire_all()
        stored = session.get(PaymentReceipt, receipt.id)
        assert stored.status == "submitted"
        assert stored.reviewed_by is None
        assert stored.reviewed_at is None
        session.refresh(payment_made_order)
        assert payment_made_order.status == "payment_made"

    def test_confirm_already_reviewed_receipt(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)
        receipt = reconciler.submit_receipt(payment_made_order.id, "customer-1")
        reconciler.reject(receipt.id, "staff-1", "Unreadable scan")

        with pytest.raises(InvalidTransitionError):
            reconciler.confirm(receipt.id, "staff-1")

        session.refresh(payment_made_order)
        assert payment_made_order.status == "payment_made"

    def test_reject_keeps_order_waiting(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)
        receipt = reconciler.submit_receipt(payment_made_order.id, "customer-1")

        rejected = reconciler.reject(receipt.id, "staff-1", "  Amount does not match  ")

        assert rejected.status == "rejected"
        assert rejected.review_notes == "Amount does not match"
        session.refresh(payment_made_order)
        assert payment_made_order.status == "payment_made"

        # The customer can try again
        retry = reconciler.submit_receipt(payment_made_order.id, "customer-1")
        assert reconciler.confirm(retry.id, "staff-1").status == "confirmed"

    def test_reject_requires_reason(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)
        receipt = reconciler.submit_receipt(payment_made_order.id, "customer-1")

        with pytest.raises(ValidationError):
            reconciler.reject(receipt.id, "staff-1", "   ")

    def test_rejected_receipt_is_immutable(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)
        receipt = reconciler.submit_receipt(payment_made_order.id, "customer-1")
        reconciler.reject(receipt.id, "staff-1", "Duplicate")

        with pytest.raises(InvalidTransitionError):
            reconciler.reject(receipt.id, "staff-1", "Again")

    def test_list_receipts(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)
        first = reconciler.submit_receipt(payment_made_order.id, "customer-1")
        reconciler.submit_receipt(payment_made_order.id, "customer-1")
        reconciler.reject(first.id, "staff-1", "Blurry")

        submitted, total = reconciler.list_receipts(status="submitted")
        assert total == 1

        everything, total = reconciler.list_receipts(order_id=str(payment_made_order.id))
        assert total == 2

    def test_confirm_unknown_receipt(self, session, plan):
        with pytest.raises(NotFoundError):
            PaymentReconciler(session).confirm("00000000-0000-0000-0000-000000000000", "staff-1")

    def test_get_receipt_scoped_to_customer(self, session, payment_made_order):
        reconciler = PaymentReconciler(session)
        receipt = reconciler.submit_receipt(payment_made_order.id, "customer-1", proof_ref="a.jpg")

        assert reconciler.get_receipt(receipt.id).id == receipt.id
        assert reconciler.get_receipt(receipt.id, customer_id="customer-1").proof_ref == "a.jpg"
        with pytest.raises(NotFoundError):
            reconciler.get_receipt(receipt.id, customer_id="customer-2")
