import uuid
from datetime import datetime, timezone

import sqlalchemy
from sqlalchemy import Column, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(Base):
    __abstract__ = True
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    created_at = Column(
        sqlalchemy.DateTime(timezone=True),
        default=utc_now,
        server_default=sqlalchemy.func.now(),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        sqlalchemy.DateTime(timezone=True),
        default=utc_now,
        server_default=sqlalchemy.func.now(),
        onupdate=utc_now,
        nullable=False,
    )

# Note: Models import this Base. Do not import models here to avoid circular imports.
# Import site_analyzer.features.analysis.models before calling init_models().
