"""Run billing background tasks manually.

Usage:
    cd backend
    python -m scripts.run_billing_tasks
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from walt.core.config import settings
from walt.core.database import async_session_maker
from walt.core.logging import setup_logging
from walt.modules.billing.tasks import run_billing_tasks
from walt.modules.payment_gateway.service import PaymentGatewayFactory


async def main():
    """Run billing tasks."""
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    print("\n" + "=" * 60)
    print("Running Billing Background Tasks")
    print("=" * 60)

    gateway = PaymentGatewayFactory.create()
    try:
        async with async_session_maker() as session:
            summary = await run_billing_tasks(session, gateway)
    finally:
        await gateway.aclose()

    print(f"\nResults:")
    print(f"  Accounts due today: {summary['accounts_due']}")
    print(f"  Orders ensured: {summary['orders_ensured']}")
    print(f"  Order failures: {summary['failures']}")
    print(f"  Pending orders checked: {summary['orders_checked']}")
    print(f"  Pending orders settled: {summary['orders_settled']}")
    print(f"  Run at: {summary['run_at']}")


if __name__ == "__main__":
    asyncio.run(main())
