#!/usr/bin/env python
"""Seed development database with a secret that is about to need a check-in.

Creates an owner contact method, one secret (server share encrypted with
SERVER_SHARE_KEY) with a single recipient, and an unused check-in token, then
prints the check-in link.

Constraints:
- Refuses to run in staging or prod (DEADSWITCH_ENV check)
- Idempotent: fixed ids, existing rows are left alone
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... SERVER_SHARE_KEY=... python ../scripts/seed_dev.py
"""

import os
import sys
from datetime import UTC, datetime, timedelta
from uuid import UUID

SEED_USER_ID = "seed-user"
SEED_OWNER_EMAIL = "owner@example.com"
SEED_SECRET_ID = UUID("00000000-0000-0000-0000-00000000d5d5")
SEED_TOKEN = "seed" + "0" * 60
SEED_CHECK_IN_DAYS = 3
# Puts the secret inside the 24 hour reminder tier
SEED_ELAPSED = timedelta(days=2, hours=1)


def main():
    # 1. Environment check (hard fail in staging/prod)
    env = os.getenv("DEADSWITCH_ENV", "local")
    if env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in DEADSWITCH_ENV={env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from deadswitch.config import get_settings
    from deadswitch.db.models import CheckInToken, Secret, SecretRecipient, UserContactMethod
    from deadswitch.db.session import get_session_factory, transaction
    from deadswitch.services.crypto import CryptoError, ServerShareCipher
    from deadswitch.services.disclosure import compute_next_check_in
    from deadswitch.services.templates import build_check_in_url

    settings = get_settings()
    try:
        cipher = ServerShareCipher.from_settings(settings)
    except CryptoError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    now = datetime.now(UTC)
    last_check_in = now - SEED_ELAPSED
    db = get_session_factory()()

    # 3. Idempotent seeding
    try:
        with transaction(db):
            contact_created = db.get(UserContactMethod, SEED_USER_ID) is None
            if contact_created:
                db.add(UserContactMethod(user_id=SEED_USER_ID, email=SEED_OWNER_EMAIL))

            secret_created = db.get(Secret, SEED_SECRET_ID) is None
            if secret_created:
                ciphertext, nonce = cipher.encrypt_server_share("seed-server-share")
                db.add(
                    Secret(
                        id=SEED_SECRET_ID,
                        user_id=SEED_USER_ID,
                        title="Seeded secret",
                        check_in_days=SEED_CHECK_IN_DAYS,
                        server_share=ciphertext,
                        share_nonce=nonce,
                        last_check_in=last_check_in,
                        next_check_in=compute_next_check_in(last_check_in, SEED_CHECK_IN_DAYS),
                        recipients=[
                            SecretRecipient(
                                position=0, name="Recipient", email="recipient@example.com"
                            )
                        ],
                    )
                )
                db.flush()

            token_row = db.query(CheckInToken).filter(CheckInToken.token == SEED_TOKEN).first()
            token_created = token_row is None
            if token_created:
                db.add(
                    CheckInToken(
                        secret_id=SEED_SECRET_ID,
                        token=SEED_TOKEN,
                        expires_at=now + timedelta(hours=settings.check_in_token_ttl_hours),
                    )
                )
    finally:
        db.close()

    # 4. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"DEADSWITCH_ENV: {env}")
    print()
    print(f"{'✓ Created' if contact_created else '• Exists'}: contact {SEED_USER_ID}")
    print(f"{'✓ Created' if secret_created else '• Exists'}: secret {SEED_SECRET_ID}")
    print(f"{'✓ Created' if token_created else '• Exists'}: check-in token")
    print()
    print(f"Check in: {build_check_in_url(settings.normalized_site_url, SEED_TOKEN)}")


if __name__ == "__main__":
    main()
