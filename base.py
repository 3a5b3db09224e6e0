# ========================================================
# base.py
# ========================================================
# ===================================================
# Declarative Base for the hosted schema mappings.
# Import this Base in both db.py and models.py
# ===================================================

from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# Constraint names follow the hosted schema (Postgres defaults)
NAMING_CONVENTION = {
    "ix": "idx_%(table_name)s_%(column_0_name)s",
    "uq": "%(table_name)s_%(column_0_name)s_key",
    "ck": "%(table_name)s_%(constraint_name)s_check",
    "fk": "%(table_name)s_%(column_0_name)s_fkey",
    "pk": "%(table_name)s_pkey",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))
