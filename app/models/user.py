"""
SQLAlchemy models base plus the identity tables owned by the auth subsystem.

Users and organizations are created by the authentication service; the billing
layer only reads them to resolve principals and to seed Stripe customers.
"""
from datetime import datetime

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, comment="Opaque user id from the auth service")
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True, comment="Opaque organization id from the auth service")
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)
