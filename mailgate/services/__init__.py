"""Mail-facing services for MailGate."""
