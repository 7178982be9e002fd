"""HTTP routes for the escalation engine."""
