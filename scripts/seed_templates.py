from __future__ import annotations

import asyncio

from compliancesync.core.logging import configure_logging
from compliancesync.persistence.db import SessionLocal
from compliancesync.persistence.seed import seed_templates


async def _seed() -> None:
    # Idempotent: existing templates are refreshed in place.
    async with SessionLocal() as session:
        created, updated = await seed_templates(session)
    print(f"templates_created={created}")
    print(f"templates_updated={updated}")


def main() -> None:
    configure_logging()
    asyncio.run(_seed())


if __name__ == "__main__":
    main()
