from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from securewatch.database import Base


class Employee(Base):
    """Monitored subject. Violations and response actions are tied to one employee."""

    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, unique=True, index=True)
    department = Column(String(100), nullable=True, index=True)
    role = Column(String(50), nullable=True, index=True)
    risk_score = Column(Float, nullable=True)  # Historical score, updated by behavioral analysis
    is_active = Column(Boolean, nullable=False, default=True)
    access_disabled_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    violations = relationship("Violation", back_populates="employee")
