"""Shared test constants and small helpers."""

import base64

from deadswitch.config import Settings
from deadswitch.services.crypto import ServerShareCipher

CRON_SECRET = "test-cron-secret"

# Deterministic 32-byte master key
TEST_MASTER_KEY = b"test_master_key_for_encryption!!"

SERVER_SHARE_PLAINTEXT = "server-share-7f3a"


def make_settings(**overrides) -> Settings:
    """Build Settings for tests. Keys are env-var aliases."""
    values = {
        "DATABASE_URL": "sqlite://",
        "DEADSWITCH_ENV": "test",
        "CRON_SECRET": CRON_SECRET,
        "SERVER_SHARE_KEY": base64.b64encode(TEST_MASTER_KEY).decode("ascii"),
        "SITE_URL": "https://deadswitch.test/",
        "EMAIL_PROVIDER": "mock",
        "EMAIL_RETRY_BASE_DELAY_MS": 1,
        "SCHEDULER_RUN_TIMEOUT_S": 30,
    }
    values.update(overrides)
    return Settings(**values)


def no_sleep(seconds: float) -> None:
    pass


def test_cipher() -> ServerShareCipher:
    return ServerShareCipher(TEST_MASTER_KEY)


# Not a test, despite the name
test_cipher.__test__ = False
