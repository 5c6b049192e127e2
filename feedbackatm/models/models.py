import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Float,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    PROJECT_LEAD = "PROJECT_LEAD"
    OPERATIONS_MANAGER = "OPERATIONS_MANAGER"
    MANAGER = "MANAGER"
    SUPERVISOR = "SUPERVISOR"
    OBSERVER = "OBSERVER"
    CLEANER = "CLEANER"


class ServicePointType(str, Enum):
    ATM = "ATM"
    BUS_STOP = "BUS_STOP"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    OVERDUE = "OVERDUE"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    address: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Deleting a company is destructive: its points and people go with it
    service_points = relationship("ServicePoint", back_populates="company", cascade="all, delete")
    users = relationship("User", back_populates="company", cascade="all, delete")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    # Passwords are verified by the identity provider; the hash is kept only for admin-created users
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(50), default=UserRole.CLEANER.value, nullable=False, index=True)
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = relationship("Company", back_populates="users")
    assignments = relationship("CleanerAssignment", back_populates="cleaner", cascade="all, delete")
    cleaning_tasks = relationship("CleaningTask", back_populates="cleaner", cascade="all, delete")
    routes = relationship("Route", back_populates="cleaner", cascade="all, delete")


class ServicePoint(Base):
    __tablename__ = "service_points"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), default=ServicePointType.ATM.value, nullable=False)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = relationship("Company", back_populates="service_points")
    assignments = relationship("CleanerAssignment", back_populates="service_point", cascade="all, delete")
    cleaning_tasks = relationship("CleaningTask", back_populates="service_point", cascade="all, delete")
    route_points = relationship("RoutePoint", back_populates="service_point", cascade="all, delete")


class CleanerAssignment(Base):
    """A standing fact: this cleaner is responsible for this point."""
    __tablename__ = "cleaner_assignments"

    cleaner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    service_point_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("service_points.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    cleaner = relationship("User", back_populates="assignments")
    service_point = relationship("ServicePoint", back_populates="assignments")


class Route(Base):
    __tablename__ = "routes"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Listing scope only; member points may belong to any company
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), index=True
    )
    cleaner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_num: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    cleaner = relationship("User", back_populates="routes")
    route_points = relationship(
        "RoutePoint",
        back_populates="route",
        cascade="all, delete-orphan",
        order_by="RoutePoint.position",
    )


class RoutePoint(Base):
    __tablename__ = "route_points"

    id: Mapped[uuid.UUID] = uuid_pk()
    route_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("routes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_point_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("service_points.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    route = relationship("Route", back_populates="route_points")
    service_point = relationship("ServicePoint", back_populates="route_points")


class CleaningTask(Base):
    __tablename__ = "cleaning_tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    service_point_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("service_points.id", ondelete="CASCADE"), nullable=False, index=True
    )
    cleaner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.PENDING.value, nullable=False, index=True)
    # Display timestamp; generated tasks sit at the start of their day
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    # Day key for generator-created tasks only; NULL for ad hoc tasks, which are exempt from uniqueness
    generation_day: Mapped[Optional[date]] = mapped_column(Date)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    photo_before: Mapped[Optional[str]] = mapped_column(String(500))
    photo_after: Mapped[Optional[str]] = mapped_column(String(500))
    photo_damage: Mapped[Optional[str]] = mapped_column(String(500))
    photos: Mapped[Optional[str]] = mapped_column(Text)  # legacy JSON-encoded list of photo urls
    notes: Mapped[Optional[str]] = mapped_column(Text)
    manager_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    service_point = relationship("ServicePoint", back_populates="cleaning_tasks")
    cleaner = relationship("User", back_populates="cleaning_tasks")

    __table_args__ = (
        UniqueConstraint("cleaner_id", "service_point_id", "generation_day", name="uq_task_cleaner_point_day"),
        Index("idx_tasks_cleaner_scheduled", "cleaner_id", "scheduled_at"),
    )
