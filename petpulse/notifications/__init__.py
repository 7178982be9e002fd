"""Owner and contact notifications (email, SMS)."""
