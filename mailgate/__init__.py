"""MailGate: e-mail round-trip approval workflow for documents."""

__version__ = "0.1.0"
