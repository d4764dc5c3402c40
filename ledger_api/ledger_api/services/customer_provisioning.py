"""Ensure a team has a customer record at the payment gateway."""

from __future__ import annotations

import logging

from ledger_core.errors import MissingTaxIdError
from ledger_core.state.repository import TeamRepository, digits_only
from ledger_core.state.tables import TeamTable
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_api.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)


class CustomerProvisioningService:
    """Find-or-create the gateway customer for a team.

    The search-before-create step narrows, but does not close, the window
    in which two concurrent first purchases create two gateway customers.
    The last id written wins.
    """

    def __init__(self, session: AsyncSession, gateway: GatewayClient) -> None:
        self._session = session
        self._gateway = gateway

    async def ensure_customer(self, team: TeamTable) -> str:
        """Return the team's gateway customer id, provisioning it if needed.

        Lookup order: the id already stored on the team, a gateway customer
        with the team's billing email, one with the team's tax id, and
        finally a newly created customer.  The id is flushed onto the team
        row before returning.

        Raises
        ------
        MissingTaxIdError
            If a customer must be created and the team has no tax id.
        GatewayRejectedError, GatewayUnreachableError
            If a gateway call fails.
        """
        if team.gateway_customer_id:
            return team.gateway_customer_id

        customer_id: str | None = None
        if team.billing_email:
            found = await self._gateway.find_customer(email=team.billing_email)
            if found is not None:
                customer_id = found.id
                logger.info("Adopted gateway customer %s for tenant=%s by email", customer_id, team.id)

        tax_id = digits_only(team.tax_id)
        if customer_id is None and tax_id:
            found = await self._gateway.find_customer(tax_id=tax_id)
            if found is not None:
                customer_id = found.id
                logger.info("Adopted gateway customer %s for tenant=%s by tax id", customer_id, team.id)

        if customer_id is None:
            if not tax_id:
                raise MissingTaxIdError(
                    "A tax id (CPF/CNPJ) is required before the first payment",
                    tenant_id=team.id,
                )
            created = await self._gateway.create_customer(name=team.name, email=team.billing_email, tax_id=tax_id)
            customer_id = created.id
            logger.info("Created gateway customer %s for tenant=%s", customer_id, team.id)

        await TeamRepository(self._session).set_gateway_customer_id(team.id, customer_id)
        team.gateway_customer_id = customer_id
        return customer_id
