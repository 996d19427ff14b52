from __future__ import annotations

import argparse
from datetime import timedelta

from compliancesync.core.config import get_settings
from compliancesync.services.access_control import Role
from compliancesync.services.auth.tokens import mint_token


def main() -> None:
    # Mint an HS256 bearer token for local development against AUTH_TOKEN_MODE=hs256.
    parser = argparse.ArgumentParser(description="Mint a development bearer token")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--role", default=Role.ADMIN.value, choices=[role.value for role in Role])
    parser.add_argument("--ttl-minutes", type=int, default=None)
    args = parser.parse_args()

    settings = get_settings()
    if settings.auth_token_mode != "hs256":
        raise SystemExit("create_dev_token requires AUTH_TOKEN_MODE=hs256")
    ttl = timedelta(minutes=args.ttl_minutes) if args.ttl_minutes else None
    token = mint_token(
        subject=args.user_id,
        email=args.email,
        tenant_id=args.tenant_id,
        role=args.role,
        ttl=ttl,
        settings=settings,
    )
    print(token)


if __name__ == "__main__":
    main()
