"""Declarative base for the SQL ledger tables."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
