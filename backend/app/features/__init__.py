"""
Feature modules for Triathlon Integrations.

Each feature is a self-contained module with:
- models.py - SQLAlchemy models
- repository.py - Data access
- schemas.py - Data types exchanged between layers (optional)
- service / sync modules - Business logic
"""
