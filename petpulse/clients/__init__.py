"""Clients for external collaborators: object storage, analysis service, escalation engine."""
