"""Shared utilities for MailGate."""
