"""
Persist the static permission catalog and role defaults.

Run after every migration and every release that changes the catalog.
Optionally promotes one principal to administrator so a fresh install has
someone able to grant permissions.

Usage:
    python -m scripts.sync_catalog
    python -m scripts.sync_catalog --administrator <principal-uuid> --reason "initial setup"
"""
import argparse
import asyncio
import os
import sys
import uuid

# Add parent directory to path to import app modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.auth.roles import ADMINISTRATOR_ROLE  # noqa: E402
from app.database import dispose_engine, get_session_factory  # noqa: E402
from app.services.authz.catalog_sync import CatalogSyncService  # noqa: E402
from app.services.authz.permission_service import PermissionService  # noqa: E402


async def sync_catalog(administrator: uuid.UUID | None = None, reason: str | None = None) -> None:
    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            report = await CatalogSyncService(session).sync(reason=reason)

        print("Catalog sync:")
        print(f"  Created permissions: {', '.join(report.created) or 'none'}")
        print(f"  Removed permissions: {', '.join(report.removed) or 'none'}")
        print(f"  Roles with changed defaults: {', '.join(report.roles_changed) or 'none'}")

        if administrator is not None:
            async with session_factory() as session:
                service = PermissionService(session, session_factory=session_factory)
                current = await service.ensure_principal(administrator)
                if current.role is ADMINISTRATOR_ROLE:
                    print(f"  Principal {administrator} is already an administrator")
                else:
                    await service.set_role_and_overrides(
                        None,
                        administrator,
                        ADMINISTRATOR_ROLE,
                        (),
                        (),
                        expected_version=current.version,
                        reason=reason or "administrator bootstrap",
                    )
                    print(f"  ✓ Promoted {administrator} to administrator")
    finally:
        await dispose_engine()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--administrator", type=uuid.UUID, help="Principal to promote to administrator")
    parser.add_argument("--reason", help="Reason stored on the audit records")
    args = parser.parse_args()
    asyncio.run(sync_catalog(args.administrator, args.reason))


if __name__ == "__main__":
    main()
