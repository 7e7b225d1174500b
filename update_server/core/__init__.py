"""Core module exports"""
from .config import settings, Settings
from .database import Base, create_db_engine, create_session_factory, init_models

__all__ = ["settings", "Settings", "Base", "create_db_engine", "create_session_factory", "init_models"]
