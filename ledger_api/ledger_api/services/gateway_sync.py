"""Adopt existing gateway customers and subscriptions onto local teams.

Used when teams already paid through the gateway before the ledger knew
their customer ids.  Each gateway customer is matched to a team by billing
email, falling back to tax id (digits only).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ledger_core.models.billing import SubscriptionStatus
from ledger_core.state.repository import TeamRepository, digits_only
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_api.services.gateway_client import GatewayClient, GatewayCustomer

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    matched: int = 0
    skipped: int = 0
    subscriptions: int = 0
    log: list[str] = field(default_factory=list)

    def note(self, line: str) -> None:
        self.log.append(line)
        logger.info(line)


class GatewaySyncService:
    """Walk every gateway customer and link it to a team.

    The caller commits.
    """

    def __init__(self, session: AsyncSession, gateway: GatewayClient) -> None:
        self._session = session
        self._gateway = gateway

    async def sync_customers(self, page_size: int = 100) -> SyncReport:
        """Page through gateway customers and adopt the ones that match a team.

        A customer with an active subscription also sets the team's
        subscription id, ``active`` status, and next due date.

        Raises
        ------
        GatewayRejectedError, GatewayUnreachableError
            If a gateway page or subscription lookup fails.
        """
        report = SyncReport()
        teams = TeamRepository(self._session)
        offset = 0

        while True:
            page = await self._gateway.list_customers(offset=offset, limit=page_size)
            for item in page.items:
                await self._sync_one(teams, item, report)
            offset += len(page.items)
            if not page.has_more or not page.items:
                break

        report.note(
            f"Sync finished: {report.matched} matched, {report.skipped} skipped, "
            f"{report.subscriptions} subscriptions"
        )
        return report

    async def _sync_one(self, teams: TeamRepository, item: dict[str, Any], report: SyncReport) -> None:
        if not item.get("id"):
            report.skipped += 1
            return
        customer = GatewayCustomer.from_payload(item)

        team = await teams.find_by_email(customer.email) if customer.email else None
        matched_by = "email"
        if team is None and digits_only(customer.tax_id):
            team = await teams.find_by_tax_id(customer.tax_id or "")
            matched_by = "tax id"
        if team is None:
            report.skipped += 1
            report.note(f"No team for gateway customer {customer.id} ({customer.email or 'no email'})")
            return

        await teams.set_gateway_customer_id(team.id, customer.id)
        report.matched += 1
        report.note(f"Linked customer {customer.id} to team {team.id} by {matched_by}")

        active = await self._gateway.list_subscriptions(customer_id=customer.id, status="ACTIVE")
        if not active:
            return
        subscription = active[0]
        await teams.set_subscription(
            team.id,
            subscription_id=subscription.id,
            status=SubscriptionStatus.ACTIVE.value,
            next_due_date=subscription.next_due_date,
        )
        report.subscriptions += 1
        report.note(f"Team {team.id} has active subscription {subscription.id}")
