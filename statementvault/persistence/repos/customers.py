from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.domain.models import Customer


async def get_customer(
    session: AsyncSession, customer_id: str, *, for_update: bool = False
) -> Customer | None:
    # Row-lock the customer when callers need to serialize per-customer writes.
    stmt = select(Customer).where(Customer.id == customer_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_customer(
    session: AsyncSession,
    *,
    customer_id: str,
    email: str | None,
    full_name: str | None,
    active: bool = True,
) -> Customer:
    customer = Customer(id=customer_id, email=email, full_name=full_name, active=active)
    session.add(customer)
    await session.flush()
    return customer
