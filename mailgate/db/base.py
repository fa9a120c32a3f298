"""Declarative base shared by all MailGate models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
