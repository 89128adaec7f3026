from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, Float, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

GUEST_USERNAME = ""
ALL_CHANNELS = "*"


class Document(Base):
    __tablename__ = "documents"

    doc_id = Column(Text, primary_key=True)
    rev = Column(Text, nullable=False)
    body = Column(JSON, nullable=False, default=dict)
    channels = Column(JSON, nullable=False, default=list)
    deleted = Column(Boolean, nullable=False, default=False)
    seq = Column(Integer, nullable=False)


class Change(Base):
    __tablename__ = "changes"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    doc_id = Column(Text, nullable=False, index=True)
    rev = Column(Text, nullable=False)
    body = Column(JSON, nullable=False, default=dict)
    channels = Column(JSON, nullable=False, default=list)
    deleted = Column(Boolean, nullable=False, default=False)
    # Store clock reading at write time; visibility is derived from it
    recorded_at = Column(Float, nullable=False)


class User(Base):
    __tablename__ = "users"

    name = Column(Text, primary_key=True)
    password_hash = Column(Text)
    channels = Column(JSON, nullable=False, default=list)
    disabled = Column(Boolean, nullable=False, default=False)


class DesignDoc(Base):
    __tablename__ = "design_docs"

    name = Column(Text, primary_key=True)
    rev = Column(Text, nullable=False)
    views = Column(JSON, nullable=False, default=dict)
