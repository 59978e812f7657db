"""
Database Models

Import all models here to ensure they are registered with SQLAlchemy.

Note: Feature models are imported lazily to avoid circular imports
(feature model modules import app.models.base, which runs this package
first). Use direct imports from features/ modules when possible.
"""

from app.models.base import Base


# Lazy import functions to avoid circular imports
def _get_user_models():
    """Lazy import of User models."""
    from app.features.users.models import Profile
    return (Profile,)


def _get_integration_models():
    """Lazy import of Integration models."""
    from app.features.integrations.models import (
        ConnectedAccount,
        Workout,
        HealthMetric,
        DailyLog,
        WebhookJob,
        SyncHistory,
    )
    return ConnectedAccount, Workout, HealthMetric, DailyLog, WebhookJob, SyncHistory


def register_models():
    """
    Import every feature model so Base.metadata knows all tables.

    Called by init_db and Alembic before they touch the metadata.
    """
    _get_user_models()
    _get_integration_models()
    return Base


# Expose as module-level attributes for backward compatibility
def __getattr__(name):
    if name == "Profile":
        return _get_user_models()[0]

    integration_names = (
        "ConnectedAccount",
        "Workout",
        "HealthMetric",
        "DailyLog",
        "WebhookJob",
        "SyncHistory",
    )
    if name in integration_names:
        return dict(zip(integration_names, _get_integration_models()))[name]

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "Base",
    "Profile",
    "ConnectedAccount",
    "Workout",
    "HealthMetric",
    "DailyLog",
    "WebhookJob",
    "SyncHistory",
    "register_models",
]
