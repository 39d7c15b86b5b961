"""
Create a platform super administrator

Usage: python scripts/create_super_admin.py admin@example.com 'a-strong-password'
"""

import argparse
import sys
import os

# Add project root to path (script is in scripts/, so go up one level)
root_path = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, root_path)

import structlog

from trainhub.core.database import system_session
from trainhub.services.provisioning import ProvisioningError, bootstrap_platform, create_super_admin

logger = structlog.get_logger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a SUPER_ADMIN system user")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--first-name", default="Super")
    parser.add_argument("--last-name", default="Admin")
    args = parser.parse_args(argv)

    with system_session() as session:
        bootstrap_platform(session)
        try:
            user = create_super_admin(
                session,
                args.email,
                args.password,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        except ProvisioningError as e:
            logger.error(str(e))
            return 1
        session.commit()

    logger.info("Super admin created", user_id=str(user.id), email=args.email)
    return 0


if __name__ == "__main__":
    sys.exit(main())
