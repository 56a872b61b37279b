# -*- coding: utf-8 -*-
"""
__init__.py
--------------------------------------------------------------------
Collects every model so that:
- Flask-Migrate/Alembic sees all tables.
- callers can write: from models import Block, Operation
"""

from .mixins import SyncMixin
from .block import Block
from .operation import Operation

__all__ = ["SyncMixin", "Block", "Operation"]
