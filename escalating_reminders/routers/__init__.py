"""HTTP routers for the escalation engine API."""
