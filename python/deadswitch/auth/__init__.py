"""Authentication for machine callers (scheduler and operators)."""

from deadswitch.auth.cron import (
    extract_bearer_token,
    require_cron_auth,
    verify_cron_authorization,
)

__all__ = ["extract_bearer_token", "require_cron_auth", "verify_cron_authorization"]
