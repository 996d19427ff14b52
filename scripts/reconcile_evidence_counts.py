from __future__ import annotations

import argparse
import asyncio

from compliancesync.core.logging import configure_logging
from compliancesync.persistence.db import SessionLocal
from compliancesync.services.maintenance import reconcile_evidence_counts


async def _reconcile(tenant_id: str, dry_run: bool) -> None:
    async with SessionLocal() as session:
        corrections = await reconcile_evidence_counts(session, tenant_id, dry_run=dry_run)
    for correction in corrections:
        print(f"requirement_id={correction.requirement_id} stored={correction.stored} actual={correction.actual}")
    print(f"corrections={len(corrections)} dry_run={str(dry_run).lower()}")


def main() -> None:
    # Repair drifted requirement evidence counters for one tenant.
    parser = argparse.ArgumentParser(description="Recompute requirement evidence counters from live evidence")
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    configure_logging()
    asyncio.run(_reconcile(args.tenant_id, args.dry_run))


if __name__ == "__main__":
    main()
