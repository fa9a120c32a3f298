"""Core workflow logic for MailGate."""
