"""HTTP API for MailGate."""
