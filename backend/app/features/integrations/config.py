"""
Integration sync configuration constants.

Contains all tunables for the webhook queue, backfill and manual sync.
"""

from datetime import timedelta


class SyncConfig:
    """Configuration for sync behavior."""

    # ==========================================================================
    # Webhook Queue
    # ==========================================================================
    # How often the poller looks for claimable jobs (seconds)
    QUEUE_POLL_INTERVAL_SECONDS = 3

    # How many jobs one poll claims and processes concurrently
    QUEUE_BATCH_SIZE = 5

    # A claimed job is invisible to other pollers for this long. A worker
    # that dies mid-job releases it implicitly when this expires.
    QUEUE_VISIBILITY_TIMEOUT = timedelta(seconds=60)

    # Delay before a failed job becomes claimable again
    QUEUE_RETRY_DELAY = timedelta(seconds=30)

    # Attempts before a job is marked failed for good
    QUEUE_MAX_ATTEMPTS = 3

    # ==========================================================================
    # Fetch windows
    # ==========================================================================
    # History pulled right after a new connection
    BACKFILL_DAYS = 30
    BACKFILL_ACTIVITY_LIMIT = 200

    # History pulled by a manual sync
    MANUAL_SYNC_DAYS = 7
    MANUAL_SYNC_ACTIVITY_LIMIT = 50

    # ==========================================================================
    # Tokens and dedup
    # ==========================================================================
    # Refresh access tokens that expire within this window
    TOKEN_REFRESH_BUFFER = timedelta(minutes=5)

    # Two workouts from the same source starting this close are one workout
    WORKOUT_DEDUP_WINDOW = timedelta(minutes=5)
