"""Declarative base shared by all engine tables."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
