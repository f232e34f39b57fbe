"""Pure domain types shared across services."""
