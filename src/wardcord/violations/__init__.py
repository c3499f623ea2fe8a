"""
Warning system core.

- **policy_table.py**: Violation type to policies, default restrictions and
  per-severity expiration rules, plus labels and colours.
- **standing.py**: Pure account standing calculation.
- **restriction_cache.py**: Per-user active restrictions.
- **snapshot_store.py**: Atomic JSON snapshot of the restriction cache.
- **identity.py**: Discord id <-> backend id translation.
- **notifications.py**: Embeds and button rows.
- **warning_system.py**: The ``WarningSystem`` service.
- **enforcement.py**: Restriction enforcement on Discord events.
"""
