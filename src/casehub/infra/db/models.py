from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import DateTime, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.casehub.domain.models.case import Case
from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.consultation import Consultation
from src.casehub.domain.models.report import Report


class Base(DeclarativeBase):
    pass


def to_column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _aware(value: Any) -> Any:
    # SQLite drops tzinfo on round-trip; stored timestamps are always UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DomainMappedMixin:
    """Column-for-field mapping between an ORM row and its pydantic model.

    Column names equal the domain model's field names; enums are stored by
    value.
    """

    __domain_model__: ClassVar[Type[BaseModel]]

    @classmethod
    def column_values(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        columns = set(cls.__table__.columns.keys())  # type: ignore[attr-defined]
        return {key: to_column_value(value) for key, value in data.items() if key in columns}

    @classmethod
    def from_domain(cls, model: BaseModel):
        return cls(**cls.column_values(model.model_dump()))

    def apply_domain(self, model: BaseModel) -> None:
        for key, value in self.column_values(model.model_dump()).items():
            setattr(self, key, value)

    def to_domain(self):
        data = {key: _aware(getattr(self, key)) for key in self.__table__.columns.keys()}  # type: ignore[attr-defined]
        return self.__domain_model__.model_validate(data)


class CaseORM(DomainMappedMixin, Base):
    __tablename__ = "cases"
    __domain_model__ = Case

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    attorney_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    patient_name: Mapped[str] = mapped_column(String, nullable=False)
    patient_cpf: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    process_number: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CaseRequestORM(DomainMappedMixin, Base):
    __tablename__ = "case_requests"
    __domain_model__ = CaseRequest
    __table_args__ = (
        # At most one active request per case.
        Index(
            "uq_case_requests_active_case",
            "case_id",
            unique=True,
            sqlite_where=text(f"status != '{RequestStatus.COMPLETED.value}'"),
            postgresql_where=text(f"status != '{RequestStatus.COMPLETED.value}'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    case_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    attorney_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    physician_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    specialist_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    evidence_type: Mapped[str] = mapped_column(String, nullable=False)
    # Compare-and-swap updates filter on status and version.
    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    report_forecast_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_requested_by: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    status_before_cancel: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ConsultationORM(DomainMappedMixin, Base):
    __tablename__ = "consultations"
    __domain_model__ = Consultation

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    case_request_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    physician_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    patient_name: Mapped[str] = mapped_column(String, nullable=False)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReportORM(DomainMappedMixin, Base):
    __tablename__ = "reports"
    __domain_model__ = Report

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    case_request_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    author_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_path: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
