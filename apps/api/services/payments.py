"""
Payment receipt reconciliation.

Customers attest a manual payment by submitting a receipt against an order
in payment_made. Staff then confirm or reject it; confirming moves the order
to payment_confirmed in the same transaction.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple, Union
from uuid import UUID
from sqlalchemy import update
from sqlmodel import Session, select, func
import structlog

from apps.core.config import (
    ActorRole,
    OrderStatus,
    OrderTrigger,
    PaymentMethod,
    ReceiptStatus,
)
from apps.core.exceptions import (
    DependencyUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotPaymentReadyError,
    RetouchException,
    ValidationError,
)
from apps.core.monitoring import increment_receipt_action
from apps.core.settings import settings
from apps.db.base import get_or_404, parse_uuid, utcnow
from apps.db.models.order import Order
from apps.db.models.receipt import PaymentReceipt
from apps.db.session import engine
from .orders import OrderStateMachine

logger = structlog.get_logger(__name__)


class IProofStore(ABC):
    """Storage holding uploaded receipt images."""

    @abstractmethod
    def exists(self, proof_ref: str) -> bool:
        """
        Check that a proof reference points at a stored file.

        Raises:
            Any exception when the store cannot be reached
        """
        pass


class PaymentReconciler:
    """
    Service for payment receipts.

    Owns receipt status. The only writer of the confirm_payment order
    transition.
    """

    def __init__(self, session: Session = None, proof_store: Optional[IProofStore] = None):
        """
        Initialize the reconciler.

        Args:
            session: Database session (optional, will create if not provided)
            proof_store: Optional store used to check proof references
        """
        self.session = session
        self._should_close_session = session is None

        if self.session is None:
            self.session = Session(engine)

        self.proof_store = proof_store
        self.orders = OrderStateMachine(self.session)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        if self._should_close_session and self.session:
            self.session.close()

    def submit_receipt(
        self,
        order_id: Union[str, UUID],
        customer_id: str,
        proof_ref: Optional[str] = None,
        amount: Optional[Union[Decimal, str]] = None,
        payment_method: Union[str, PaymentMethod] = PaymentMethod.BANK_TRANSFER,
        transaction_reference: Optional[str] = None,
        paid_on: Optional[date] = None,
        notes: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> PaymentReceipt:
        """
        Record a customer's payment receipt for an order.

        Args:
            order_id: Order being paid
            customer_id: Submitting customer, must own the order
            proof_ref: Reference to the uploaded proof image

        Returns:
            The receipt in status submitted

        Raises:
            NotFoundError: unknown order or owned by someone else
            OrderNotPaymentReadyError: order is not in payment_made
            ValidationError: bad amount or method, or unknown proof reference
            DependencyUnavailableError: proof store could not be reached
        """
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError.for_fields({"payment_method": f"Unknown payment method: {payment_method}"})

        value = Decimal(str(amount)) if amount is not None else None
        if value is not None and value <= 0:
            raise ValidationError.for_fields({"amount": "Amount must be greater than zero"})

        if proof_ref:
            self._check_proof(proof_ref)

        order = get_or_404(self.session, Order, order_id, "Order")
        if order.customer_id != customer_id:
            raise NotFoundError("Order", str(order.id))
        if order.status != OrderStatus.PAYMENT_MADE.value:
            increment_receipt_action("submit", "not_ready")
            raise OrderNotPaymentReadyError(str(order.id), order.status)

        receipt = PaymentReceipt(
            order_id=order.id,
            customer_id=customer_id,
            proof_ref=proof_ref,
            amount=value,
            currency=currency or order.currency or settings.default_currency,
            payment_method=method.value,
            transaction_reference=transaction_reference,
            paid_on=paid_on,
            notes=notes,
        )
        self.session.add(receipt)
        self.session.commit()
        self.session.refresh(receipt)

        increment_receipt_action("submit", "success")
        logger.info(
            "Payment receipt submitted",
            receipt_id=str(receipt.id),
            order_id=str(order.id),
            customer_id=customer_id,
            payment_method=method.value,
        )
        return receipt

    def _check_proof(self, proof_ref: str) -> None:
        if self.proof_store is None:
            return
        try:
            found = self.proof_store.exists(proof_ref)
        except Exception as e:
            increment_receipt_action("submit", "dependency_unavailable")
            logger.error("Proof store lookup failed", proof_ref=proof_ref, error=str(e))
            raise DependencyUnavailableError("proof store", str(e)) from e
        if not found:
            raise ValidationError.for_fields({"proof_ref": "Proof file not found"})

    def confirm(
        self,
        receipt_id: Union[str, UUID],
        staff_id: str,
        note: Optional[str] = None,
    ) -> PaymentReceipt:
        """
        Confirm a receipt and move its order to payment_confirmed.

        Both changes commit together or not at all.

        Raises:
            NotFoundError: unknown receipt
            OrderNotPaymentReadyError: order is not in payment_made
            InvalidTransitionError: receipt already reviewed
        """
        receipt = get_or_404(self.session, PaymentReceipt, receipt_id, "Payment receipt", for_update=True)

        try:
            order = get_or_404(self.session, Order, receipt.order_id, "Order", for_update=True)
            if order.status != OrderStatus.PAYMENT_MADE.value:
                raise OrderNotPaymentReadyError(str(order.id), order.status)

            self._review(receipt, ReceiptStatus.CONFIRMED, staff_id, note)
            self.orders._advance(
                order.id,
                OrderTrigger.CONFIRM_PAYMENT,
                ActorRole.STAFF,
                actor_id=staff_id,
                reason=note,
                commit=False,
                allow_noop=False,
            )
            self.session.commit()
        except RetouchException as e:
            self.session.rollback()
            increment_receipt_action("confirm", type(e).__name__)
            logger.warning(
                "Payment receipt confirmation refused",
                receipt_id=str(receipt_id),
                staff_id=staff_id,
                reason=e.message,
            )
            raise
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(receipt)
        increment_receipt_action("confirm", "success")
        logger.info(
            "Payment receipt confirmed",
            receipt_id=str(receipt.id),
            order_id=str(receipt.order_id),
            staff_id=staff_id,
        )
        return receipt

    def reject(self, receipt_id: Union[str, UUID], staff_id: str, reason: str) -> PaymentReceipt:
        """Reject a receipt. The order stays in payment_made."""
        if not reason or not reason.strip():
            raise ValidationError.for_fields({"reason": "A rejection reason is required"})

        receipt = get_or_404(self.session, PaymentReceipt, receipt_id, "Payment receipt", for_update=True)
        try:
            self._review(receipt, ReceiptStatus.REJECTED, staff_id, reason.strip())
            self.session.commit()
        except RetouchException as e:
            self.session.rollback()
            increment_receipt_action("reject", type(e).__name__)
            raise
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(receipt)
        increment_receipt_action("reject", "success")
        logger.info(
            "Payment receipt rejected",
            receipt_id=str(receipt.id),
            order_id=str(receipt.order_id),
            staff_id=staff_id,
        )
        return receipt

    def _review(self, receipt: PaymentReceipt, outcome: ReceiptStatus, staff_id: str, notes: Optional[str]) -> None:
        """Compare-and-set a submitted receipt to its review outcome."""
        if receipt.status != ReceiptStatus.SUBMITTED.value:
            raise InvalidTransitionError(
                f"Receipt {receipt.id} was already {receipt.status}",
                current_status=receipt.status,
                trigger=outcome.value,
            )

        now = utcnow()
        result = self.session.execute(
            update(PaymentReceipt)
            .where(
                PaymentReceipt.id == receipt.id,
                PaymentReceipt.status == ReceiptStatus.SUBMITTED.value,
            )
            .values(
                status=outcome.value,
                reviewed_by=staff_id,
                reviewed_at=now,
                review_notes=notes,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Receipt {receipt.id} changed during review",
                trigger=outcome.value,
            )

    # Reads

    def get_receipt(self, receipt_id: Union[str, UUID], customer_id: Optional[str] = None) -> PaymentReceipt:
        receipt = get_or_404(self.session, PaymentReceipt, receipt_id, "Payment receipt")
        if customer_id is not None and receipt.customer_id != customer_id:
            raise NotFoundError("Payment receipt", str(receipt.id))
        return receipt

    def list_receipts(
        self,
        status: Optional[Union[str, ReceiptStatus]] = None,
        order_id: Optional[Union[str, UUID]] = None,
        customer_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[PaymentReceipt], int]:
        """Receipts, newest first, with the total matching count."""
        filters = []
        if status is not None:
            try:
                filters.append(PaymentReceipt.status == ReceiptStatus(status).value)
            except ValueError:
                raise ValidationError.for_fields({"status": f"Unknown receipt status: {status}"})
        if order_id is not None:
            filters.append(PaymentReceipt.order_id == parse_uuid(order_id, "Order"))
        if customer_id is not None:
            filters.append(PaymentReceipt.customer_id == customer_id)

        total = self.session.exec(select(func.count()).select_from(PaymentReceipt).where(*filters)).one()
        receipts = self.session.exec(
            select(PaymentReceipt)
            .where(*filters)
            .order_by(PaymentReceipt.created_at.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        ).all()
        return list(receipts), total
