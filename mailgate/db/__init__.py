"""Database layer for MailGate."""
