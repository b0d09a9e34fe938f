"""
Order lifecycle service.

Orders move through a closed set of statuses:

    pending -> approved -> sent -> viewed -> payment_made -> payment_confirmed -> paid
    pending | approved -> rejected

Every applied change is a compare-and-set on the status that was read,
recorded as an OrderStatusEvent. rejected and paid are terminal.
"""

import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple, Union
from uuid import UUID
from sqlalchemy import update
from sqlmodel import Session, select, func
import structlog

from apps.core.config import (
    ActorRole,
    OrderFunding,
    OrderStatus,
    OrderTrigger,
    TERMINAL_ORDER_STATUSES,
    ORDER_NUMBER_ATTEMPTS,
)
from apps.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from apps.core.monitoring import (
    capture_order_context,
    increment_order_transition,
    increment_orders_created,
)
from apps.core.settings import settings
from apps.db.base import get_or_404, parse_uuid, utcnow
from apps.db.models.order import Order, OrderStatusEvent
from apps.db.models.subscription import QuotaReservation
from apps.db.session import engine

logger = structlog.get_logger(__name__)

CREATE_TRIGGER = "create"

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class TransitionRule(NamedTuple):
    sources: FrozenSet[OrderStatus]
    destination: OrderStatus
    role: ActorRole


TRANSITIONS: Dict[OrderTrigger, TransitionRule] = {
    OrderTrigger.APPROVE: TransitionRule(
        frozenset({OrderStatus.PENDING}), OrderStatus.APPROVED, ActorRole.STAFF
    ),
    OrderTrigger.REJECT: TransitionRule(
        frozenset({OrderStatus.PENDING, OrderStatus.APPROVED}), OrderStatus.REJECTED, ActorRole.STAFF
    ),
    OrderTrigger.MARK_SENT: TransitionRule(
        frozenset({OrderStatus.APPROVED}), OrderStatus.SENT, ActorRole.STAFF
    ),
    OrderTrigger.VIEW: TransitionRule(
        frozenset({OrderStatus.SENT}), OrderStatus.VIEWED, ActorRole.CUSTOMER
    ),
    OrderTrigger.REPORT_PAYMENT: TransitionRule(
        frozenset({OrderStatus.VIEWED}), OrderStatus.PAYMENT_MADE, ActorRole.CUSTOMER
    ),
    OrderTrigger.CONFIRM_PAYMENT: TransitionRule(
        frozenset({OrderStatus.PAYMENT_MADE}), OrderStatus.PAYMENT_CONFIRMED, ActorRole.STAFF
    ),
    OrderTrigger.MARK_PAID: TransitionRule(
        frozenset({OrderStatus.PAYMENT_CONFIRMED}), OrderStatus.PAID, ActorRole.STAFF
    ),
}

# Applied only as part of receipt confirmation
INTERNAL_TRIGGERS = frozenset({OrderTrigger.CONFIRM_PAYMENT})


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Build a candidate order number, e.g. ORD-20240115-K3ZQ."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"{settings.order_number_prefix}-{now:%Y%m%d}-{suffix}"


class OrderStateMachine:
    """
    Service for creating orders and applying status triggers.

    Never touches quota: a subscription-funded order binds a reservation
    the allocator already made.
    """

    def __init__(self, session: Session = None):
        """
        Initialize the order service.

        Args:
            session: Database session (optional, will create if not provided)
        """
        self.session = session
        self._should_close_session = session is None

        if self.session is None:
            self.session = Session(engine)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        if self._should_close_session and self.session:
            self.session.close()

    # Creation

    def create(
        self,
        customer_id: str,
        subscription_id: Optional[Union[str, UUID]],
        image_count: int,
        price: Optional[Union[Decimal, str]] = None,
        reservation_id: Optional[Union[str, UUID]] = None,
        notes: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Order:
        """
        Create a pending order.

        Args:
            customer_id: Ordering customer
            subscription_id: Funding subscription, None for pay-per-image
            image_count: Images in the batch
            price: Total price, required (> 0) for pay-per-image
            reservation_id: Reservation to bind, defaults to the oldest match
            notes: Free-form customer notes

        Returns:
            The new Order in status pending

        Raises:
            ValidationError: bad count or price, or no matching unbound reservation
        """
        if image_count < 1:
            raise ValidationError.for_fields({"image_count": "Image count must be at least 1"})

        if subscription_id is not None:
            if price is not None:
                raise ValidationError.for_fields({"price": "Subscription orders are not priced"})
            funding = OrderFunding.SUBSCRIPTION
            sub_key = parse_uuid(subscription_id, "Subscription")
            reservation = self._find_reservation(customer_id, sub_key, image_count, reservation_id)
            order = Order(
                order_number=self._next_order_number(),
                customer_id=customer_id,
                subscription_id=sub_key,
                reservation_id=reservation.id,
                funding=funding.value,
                image_count=image_count,
                notes=notes,
            )
        else:
            if reservation_id is not None:
                raise ValidationError.for_fields({"reservation_id": "Pay-per-image orders have no reservation"})
            amount = Decimal(str(price)) if price is not None else None
            if amount is None or amount <= 0:
                raise ValidationError.for_fields({"price": "Pay-per-image orders need a price greater than zero"})
            funding = OrderFunding.PAY_PER_IMAGE
            reservation = None
            order = Order(
                order_number=self._next_order_number(),
                customer_id=customer_id,
                funding=funding.value,
                image_count=image_count,
                price=amount,
                currency=currency or settings.default_currency,
                notes=notes,
            )

        try:
            self.session.add(order)
            self.session.flush()

            if reservation is not None:
                bound = self.session.execute(
                    update(QuotaReservation)
                    .where(QuotaReservation.id == reservation.id, QuotaReservation.order_id.is_(None))
                    .values(order_id=order.id)
                    .execution_options(synchronize_session=False)
                )
                if bound.rowcount != 1:
                    raise ValidationError.for_fields({"reservation_id": "Reservation is already bound to an order"})

            self.session.add(OrderStatusEvent(
                order_id=order.id,
                trigger=CREATE_TRIGGER,
                from_status=None,
                to_status=OrderStatus.PENDING.value,
                actor_role=ActorRole.CUSTOMER.value,
                actor_id=customer_id,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(order)
        increment_orders_created(funding.value)
        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            customer_id=customer_id,
            funding=funding.value,
            images=image_count,
        )
        return order

    def _find_reservation(
        self,
        customer_id: str,
        subscription_id: UUID,
        image_count: int,
        reservation_id: Optional[Union[str, UUID]],
    ) -> QuotaReservation:
        statement = select(QuotaReservation).where(
            QuotaReservation.subscription_id == subscription_id,
            QuotaReservation.customer_id == customer_id,
            QuotaReservation.image_count == image_count,
            QuotaReservation.order_id.is_(None),
        )
        if reservation_id is not None:
            statement = statement.where(QuotaReservation.id == parse_uuid(reservation_id, "Quota reservation"))

        reservation = self.session.exec(
            statement.order_by(QuotaReservation.created_at).with_for_update()
        ).first()
        if reservation is None:
            raise ValidationError.for_fields({
                "reservation_id": "No unbound quota reservation matches this subscription and image count"
            })
        return reservation

    def _next_order_number(self) -> str:
        candidate = generate_order_number()
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            taken = self.session.exec(
                select(Order.id).where(Order.order_number == candidate)
            ).first()
            if taken is None:
                return candidate
            candidate = generate_order_number()
        logger.warning("Order number attempts exhausted", order_number=candidate)
        return candidate

    # Transitions

    def transition(
        self,
        order_id: Union[str, UUID],
        trigger: Union[str, OrderTrigger],
        actor_role: Union[str, ActorRole],
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Apply a trigger on behalf of an actor.

        Re-applying a trigger whose destination is the current status is a
        successful no-op. confirm_payment is only applied by receipt
        confirmation and is refused here.

        Raises:
            UnauthorizedError: actor_role may not fire this trigger
            InvalidTransitionError: terminal order, wrong source status or internal trigger
            NotFoundError: unknown order
        """
        trigger = self._parse_trigger(trigger)
        role = self._parse_role(actor_role)
        self._check_role(trigger, role)

        if trigger in INTERNAL_TRIGGERS:
            increment_order_transition(trigger.value, "invalid")
            raise InvalidTransitionError(
                f"{trigger.value} is applied by confirming a payment receipt",
                trigger=trigger.value,
            )

        return self._advance(order_id, trigger, role, actor_id=actor_id, reason=reason)

    def _advance(
        self,
        order_id: Union[str, UUID],
        trigger: OrderTrigger,
        role: ActorRole,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        *,
        commit: bool = True,
        allow_noop: bool = True,
    ) -> Order:
        """
        Compare-and-set the order status.

        With commit=False the change is flushed into the caller's
        transaction, and failures leave rollback to the caller.
        """
        rule = TRANSITIONS[trigger]
        self._check_role(trigger, role)

        order = get_or_404(self.session, Order, order_id, "Order", for_update=True)
        current = OrderStatus(order.status)
        capture_order_context(str(order.id), actor_id=actor_id, trigger=trigger.value)

        try:
            if current in TERMINAL_ORDER_STATUSES:
                raise InvalidTransitionError(
                    f"Order {order.order_number} is {current.value} and can no longer change",
                    current_status=current.value,
                    trigger=trigger.value,
                )

            if allow_noop and current == rule.destination:
                if commit:
                    self.session.commit()
                increment_order_transition(trigger.value, "noop")
                logger.info(
                    "Order transition already applied",
                    order_id=str(order.id),
                    trigger=trigger.value,
                    status=current.value,
                )
                return order

            if current not in rule.sources:
                raise InvalidTransitionError(
                    f"Cannot {trigger.value} an order in status {current.value}",
                    current_status=current.value,
                    trigger=trigger.value,
                )

            now = utcnow()
            values = {"status": rule.destination.value, "updated_at": now}
            if trigger == OrderTrigger.REJECT:
                values["rejection_reason"] = reason
            if trigger == OrderTrigger.MARK_PAID:
                values["paid_at"] = now

            result = self.session.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError(
                    f"Order {order.order_number} changed while applying {trigger.value}",
                    trigger=trigger.value,
                )

            self.session.add(OrderStatusEvent(
                order_id=order.id,
                trigger=trigger.value,
                from_status=current.value,
                to_status=rule.destination.value,
                actor_role=role.value,
                actor_id=actor_id,
                reason=reason,
            ))
            self.session.flush()
            if commit:
                self.session.commit()
        except InvalidTransitionError:
            if commit:
                self.session.rollback()
            increment_order_transition(trigger.value, "invalid")
            logger.warning(
                "Order transition refused",
                order_id=str(order_id),
                trigger=trigger.value,
                status=current.value,
            )
            raise
        except Exception:
            if commit:
                self.session.rollback()
            raise

        self.session.refresh(order)
        increment_order_transition(trigger.value, "applied")
        logger.info(
            "Order transitioned",
            order_id=str(order.id),
            order_number=order.order_number,
            trigger=trigger.value,
            from_status=current.value,
            to_status=order.status,
            actor_role=role.value,
            actor_id=actor_id,
        )
        return order

    def _check_role(self, trigger: OrderTrigger, role: ActorRole) -> None:
        required = TRANSITIONS[trigger].role
        if role != required:
            increment_order_transition(trigger.value, "unauthorized")
            raise UnauthorizedError(
                f"{trigger.value} requires role {required.value}",
                details={"trigger": trigger.value, "required_role": required.value, "actor_role": role.value},
            )

    @staticmethod
    def _parse_trigger(trigger: Union[str, OrderTrigger]) -> OrderTrigger:
        try:
            return OrderTrigger(trigger)
        except ValueError:
            raise InvalidTransitionError(f"Unknown trigger: {trigger}", trigger=str(trigger))

    @staticmethod
    def _parse_role(role: Union[str, ActorRole]) -> ActorRole:
        try:
            return ActorRole(role)
        except ValueError:
            raise UnauthorizedError(f"Unknown actor role: {role}")

    # Reads

    def get_order(self, order_id: Union[str, UUID], customer_id: Optional[str] = None) -> Order:
        """Get an order; orders of other customers are reported as not found."""
        order = get_or_404(self.session, Order, order_id, "Order")
        if customer_id is not None and order.customer_id != customer_id:
            raise NotFoundError("Order", str(order.id))
        return order

    def list_orders(
        self,
        customer_id: Optional[str] = None,
        status: Optional[Union[str, OrderStatus]] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Order], int]:
        """Newest orders first, with the total matching count."""
        filters = []
        if customer_id is not None:
            filters.append(Order.customer_id == customer_id)
        if status is not None:
            try:
                filters.append(Order.status == OrderStatus(status).value)
            except ValueError:
                raise ValidationError.for_fields({"status": f"Unknown order status: {status}"})

        total = self.session.exec(select(func.count()).select_from(Order).where(*filters)).one()
        orders = self.session.exec(
            select(Order)
            .where(*filters)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        ).all()
        return list(orders), total

    def history(self, order_id: Union[str, UUID], customer_id: Optional[str] = None) -> List[OrderStatusEvent]:
        """Applied status changes, oldest first."""
        order = self.get_order(order_id, customer_id=customer_id)
        statement = (
            select(OrderStatusEvent)
            .where(OrderStatusEvent.order_id == order.id)
            .order_by(OrderStatusEvent.created_at)
        )
        return list(self.session.exec(statement).all())
