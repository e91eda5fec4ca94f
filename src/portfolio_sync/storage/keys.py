"""Names of the persisted keys owned by the sync engine."""

SYNC_ENABLED = "sync_enabled"
SERVER_URL = "sync_server_url"
USER_ID = "sync_user_id"
DEVICE_ID = "sync_device_id"
LAST_SYNC = "sync_last_sync"
LAST_SYNC_HASH = "sync_last_hash"
LAST_ERROR = "sync_last_error"
AUTO_SYNC = "sync_auto_sync"
SYNC_INTERVAL = "sync_interval_minutes"
ACCESS_TOKEN = "sync_access_token"
ACCESS_TOKEN_EXPIRY = "sync_access_token_expiry"
REFRESH_TOKEN = "sync_refresh_token"
REFRESH_TOKEN_EXPIRY = "sync_refresh_token_expiry"
REMEMBER_KEY = "sync_remember_key"
MASTER_KEY = "sync_master_key"
EXTRA_PLATFORMS = "sync_extra_platforms"

GOAL_TARGET_PREFIX = "goal_target_"
GOAL_FIXED_PREFIX = "goal_fixed_"

TOKEN_KEYS = (ACCESS_TOKEN, ACCESS_TOKEN_EXPIRY, REFRESH_TOKEN, REFRESH_TOKEN_EXPIRY)


def goal_target(goal_id: str) -> str:
    """Storage key for a goal's target percentage."""
    return f"{GOAL_TARGET_PREFIX}{goal_id}"


def goal_fixed(goal_id: str) -> str:
    """Storage key for a goal's fixed flag."""
    return f"{GOAL_FIXED_PREFIX}{goal_id}"
