from __future__ import annotations

import argparse
import asyncio

from compliancesync.core.logging import configure_logging
from compliancesync.persistence.db import SessionLocal
from compliancesync.services.reports import advance_report


async def _advance(
    tenant_id: str,
    report_id: str,
    status: str,
    file_url: str | None,
    error_message: str | None,
) -> None:
    # Renderer hook: report generation runs outside the API and reports back here.
    async with SessionLocal() as session:
        report = await advance_report(
            session,
            tenant_id=tenant_id,
            report_id=report_id,
            status=status,
            file_url=file_url,
            error_message=error_message,
        )
    print(f"report_id={report.id} status={report.status}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Record a report rendering status change")
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--report-id", required=True)
    parser.add_argument("--status", required=True, choices=["generating", "completed", "failed"])
    parser.add_argument("--file-url", default=None)
    parser.add_argument("--error-message", default=None)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(_advance(args.tenant_id, args.report_id, args.status, args.file_url, args.error_message))


if __name__ == "__main__":
    main()
