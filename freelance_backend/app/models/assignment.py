"""
Assignment database model.

Minimal mission record that entries are attributed to. Full mission
management lives outside this service.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from freelance_backend.app.db.session import Base


class Assignment(Base):
    """Assignment (mission) model."""
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    owner_id = Column(Integer, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self):
        return f"<Assignment(id={self.id}, name='{self.name}')>"
