"""
Scheduled background tasks.

- **expiration_sweeper.py**: Periodically expires violations whose
  ``expires_at`` has passed and releases their restrictions.
"""
