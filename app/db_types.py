"""Database-agnostic type definitions for SQLAlchemy models.

Every model uses these so the same metadata works on PostgreSQL (production)
and SQLite (local runs and the test suite).
"""
from sqlalchemy import JSON, Numeric
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# JSON works with both SQLite and PostgreSQL
JSONType = JSON

# UUID type that works with both databases
UUIDType = PG_UUID

# Money in major units (e.g. 12.50 GBP)
MoneyType = Numeric(12, 2)

# Loyalty points carry two decimals (1% cashback on 12.34 = 0.12)
PointsType = Numeric(12, 2)

# Commission rates in [0, 1]
RateType = Numeric(5, 4)
