"""
Integration database models.

Models:
- ConnectedAccount: OAuth connection to a provider (one per athlete+provider)
- Workout: Normalized activity from any provider
- HealthMetric: Normalized wellness reading
- DailyLog: Per-day wellness summary, partly auto-filled from metrics
- WebhookJob: Durable webhook processing queue
- SyncHistory: Append-only audit of sync runs
"""

from datetime import datetime
import uuid

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from app.models.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class ConnectedAccount(Base):
    """
    Athlete's connection to a provider.

    Tokens are stored encrypted (see crypto.py). Rows written before
    encryption was introduced may still hold plaintext tokens.
    """

    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint("athlete_id", "provider", name="uq_connected_accounts_athlete_provider"),
        Index("ix_connected_accounts_provider_uid", "provider", "provider_uid"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(36), nullable=False, index=True)
    club_id = Column(String(36), nullable=True)
    provider = Column(String(20), nullable=False)

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires = Column(DateTime, nullable=True)  # NULL = never expires

    provider_uid = Column(String(64), nullable=True)
    scopes = Column(JSON, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ConnectedAccount athlete={self.athlete_id} provider={self.provider}>"


class Workout(Base):
    """Completed workout, normalized across providers."""

    __tablename__ = "workouts"
    __table_args__ = (
        Index("ix_workouts_athlete_source_started", "athlete_id", "source", "started_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(36), nullable=False)
    club_id = Column(String(36), nullable=True)

    activity_type = Column(String(20), nullable=False)
    source = Column(String(20), nullable=False)
    started_at = Column(DateTime, nullable=False)

    duration_s = Column(Integer, nullable=True)
    distance_m = Column(Float, nullable=True)
    avg_hr = Column(Float, nullable=True)
    max_hr = Column(Float, nullable=True)
    avg_pace_s_km = Column(Integer, nullable=True)
    avg_power_w = Column(Float, nullable=True)
    calories = Column(Float, nullable=True)
    tss = Column(Float, nullable=True)

    raw_data = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Workout {self.source} {self.activity_type} {self.started_at}>"


class HealthMetric(Base):
    """Single wellness reading."""

    __tablename__ = "health_metrics"
    __table_args__ = (
        Index("ix_health_metrics_athlete_type_recorded", "athlete_id", "metric_type", "recorded_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(36), nullable=False)
    club_id = Column(String(36), nullable=True)

    metric_type = Column(String(30), nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(String(20), nullable=False)
    recorded_at = Column(DateTime, nullable=False)
    source = Column(String(20), nullable=False)
    raw_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class DailyLog(Base):
    """
    Daily wellness log.

    Usually filled in by the athlete; the integration pipeline only fills
    fields that are still empty.
    """

    __tablename__ = "daily_logs"
    __table_args__ = (
        UniqueConstraint("athlete_id", "log_date", name="uq_daily_logs_athlete_date"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(36), nullable=False, index=True)
    club_id = Column(String(36), nullable=True)
    log_date = Column(Date, nullable=False)

    hrv = Column(Float, nullable=True)
    resting_hr = Column(Float, nullable=True)
    sleep_hours = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WebhookJob(Base):
    """
    Queued webhook event.

    Status flow:
        pending -> processing -> done
                              -> pending (retry after available_at)
                              -> failed (attempts exhausted)

    A processing job whose locked_until has passed is claimable again.
    """

    __tablename__ = "webhook_queue"
    __table_args__ = (
        Index("ix_webhook_queue_status_available", "status", "available_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    provider = Column(String(20), nullable=False)
    event_data = Column(JSON, nullable=False)

    status = Column(String(20), nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)

    available_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    locked_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<WebhookJob {self.id} {self.provider} {self.status} {self.attempts}/{self.max_attempts}>"


class SyncHistory(Base):
    """Audit record of one sync run."""

    __tablename__ = "sync_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    athlete_id = Column(String(36), nullable=True, index=True)
    provider = Column(String(20), nullable=False)
    event_type = Column(String(20), nullable=False)  # webhook | manual | backfill
    status = Column(String(20), nullable=False)  # success | skipped | failed

    workouts_added = Column(Integer, default=0)
    metrics_added = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider": self.provider,
            "eventType": self.event_type,
            "status": self.status,
            "workoutsAdded": self.workouts_added,
            "metricsAdded": self.metrics_added,
            "errorMessage": self.error_message,
            "durationMs": self.duration_ms,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
