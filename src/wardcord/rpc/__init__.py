"""Client for the oRPC moderation backend."""
