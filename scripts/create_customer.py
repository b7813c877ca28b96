from __future__ import annotations

import argparse
import asyncio
import sys
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from statementvault.domain.models import Customer
from statementvault.persistence.db import SessionLocal
from statementvault.persistence.repos.customers import create_customer


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create or update a statement vault customer")
    parser.add_argument("--customer-id", default=None, help="Customer identifier (generated when omitted)")
    parser.add_argument("--email", default=None, help="Optional contact email")
    parser.add_argument("--name", default=None, help="Optional display name")
    parser.add_argument("--inactive", action="store_true", help="Create the customer deactivated")
    return parser


async def _create(args: argparse.Namespace) -> int:
    customer_id = args.customer_id or uuid4().hex
    async with SessionLocal() as session:
        existing = await session.get(Customer, customer_id)
        if existing is not None:
            # Re-running toggles activation and refreshes contact details in place.
            existing.active = not args.inactive
            if args.email:
                existing.email = args.email
            if args.name:
                existing.full_name = args.name
        else:
            await create_customer(
                session,
                customer_id=customer_id,
                email=args.email,
                full_name=args.name,
                active=not args.inactive,
            )
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            print("email already belongs to another customer", file=sys.stderr)
            return 1
    print(f"customer_id={customer_id} active={not args.inactive}")
    return 0


def main() -> None:
    args = _build_parser().parse_args()
    sys.exit(asyncio.run(_create(args)))


if __name__ == "__main__":
    main()
