"""Models module exports"""
from .database import Base, DedupRecord

__all__ = ["Base", "DedupRecord"]
