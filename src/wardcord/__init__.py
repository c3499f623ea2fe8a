"""
Wardcord - Discord Warning & Violation Enforcement Bot

Wardcord records rule violations in an external moderation backend, derives
per-user feature restrictions from them and enforces those restrictions on
every relevant Discord event until the violations expire.

Core Components:

- **Violations**: Policy table, standing calculator, restriction cache and the
  WarningSystem service running issuance, expiry, suspension and rehydration
- **Enforcement**: Message, voice, interaction and nickname interceptors with a
  per-user message rate limiter
- **Backend RPC**: Typed httpx client for the oRPC moderation backend
- **Scheduler**: Periodic expiration sweeper
- **Cogs**: Slash commands, standing buttons and lifecycle listeners

Usage:
    from wardcord.main import main
    main()
"""
