from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from .models import (
    Address,
    BillingBreakdown,
    BillingQueueItem,
    BillingSnapshot,
    CustomerSnapshot,
    CustomFields,
    ServiceSnapshot,
    Ticket,
)
from .sessions import format_time_spent

UNKNOWN_CUSTOMER = "Unknown Customer"
UNKNOWN_EMAIL = "unknown@example.com"
NOT_AVAILABLE = "N/A"
DEFAULT_CATEGORY = "General"


def _money(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _or_default(value: str | None, default: str) -> str:
    return value if value else default


@dataclass(slots=True, frozen=True)
class BillingRates:
    hourly_rate: float = 75.0
    tax_rate: float = 0.20
    default_country: str = "United Kingdom"


class BillingQueueDeriver:
    """Build the invoicing snapshot for a ticket that just completed."""

    def __init__(self, rates: BillingRates | None = None) -> None:
        self._rates = rates or BillingRates()

    @property
    def rates(self) -> BillingRates:
        return self._rates

    def derive(self, ticket: Ticket, now: datetime) -> BillingQueueItem:
        return BillingQueueItem(
            queue_item_id=f"BQ-{uuid.uuid4().hex[:12]}",
            ticket_id=ticket.id,
            added_to_queue_at=now,
            ticket_data=self.snapshot(ticket, now),
        )

    def snapshot(self, ticket: Ticket, completed_at: datetime) -> BillingSnapshot:
        rates = self._rates
        minutes = ticket.total_work_time
        labor_cost = minutes * (rates.hourly_rate / 60)
        total_before_tax = labor_cost

        return BillingSnapshot(
            customer=self._customer(ticket),
            service=ServiceSnapshot(
                description=ticket.title,
                category=_or_default(ticket.category, DEFAULT_CATEGORY),
                date_completed=completed_at,
                time_spent=format_time_spent(minutes),
                hourly_rate=rates.hourly_rate,
            ),
            billing=BillingBreakdown(
                labor_cost=_money(labor_cost),
                material_costs=(),
                travel_cost=0.0,
                total_before_tax=_money(total_before_tax),
                tax_rate=round(rates.tax_rate * 100, 4),
                tax_amount=_money(total_before_tax * rates.tax_rate),
                total_amount=_money(total_before_tax * (1 + rates.tax_rate)),
            ),
            custom_fields=CustomFields(
                project_reference=_or_default(ticket.project_reference, ticket.id),
                purchase_order_number=_or_default(ticket.purchase_order_number, NOT_AVAILABLE),
            ),
        )

    def _customer(self, ticket: Ticket) -> CustomerSnapshot:
        contact = ticket.contact_details
        if contact is None:
            return CustomerSnapshot(
                name=UNKNOWN_CUSTOMER,
                email=UNKNOWN_EMAIL,
                phone=NOT_AVAILABLE,
                address=Address(
                    line1=NOT_AVAILABLE,
                    city=NOT_AVAILABLE,
                    postcode=NOT_AVAILABLE,
                    country=self._rates.default_country,
                ),
            )

        address = contact.address
        return CustomerSnapshot(
            name=contact.company_name or contact.name or UNKNOWN_CUSTOMER,
            email=_or_default(contact.email, UNKNOWN_EMAIL),
            phone=_or_default(contact.phone, NOT_AVAILABLE),
            address=Address(
                line1=_or_default(address.line1, NOT_AVAILABLE),
                city=_or_default(address.city, NOT_AVAILABLE),
                postcode=_or_default(address.postcode, NOT_AVAILABLE),
                country=_or_default(address.country, self._rates.default_country),
            ),
        )
