from datetime import datetime, timezone
from typing import Optional, Any
from uuid import uuid4

from sqlalchemy import String, Integer, Float, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autoprint.db.session import Base
from autoprint.domain.states import JobStatus, PaymentStatus, PaymentRecordStatus, TaskStatus

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def new_id() -> str:
    return uuid4().hex

class PrintJob(Base):
    __tablename__ = "print_jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    payer_identity: Mapped[str] = mapped_column(String, index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    file_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    document_ref: Mapped[str] = mapped_column(String, nullable=False)

    # Set by the document inspector
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    estimated_minutes: Mapped[int] = mapped_column(Integer, default=0)

    # State machine
    status: Mapped[JobStatus] = mapped_column(String, default=JobStatus.PENDING, index=True)
    payment_status: Mapped[PaymentStatus] = mapped_column(String, default=PaymentStatus.PENDING)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    failure_reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # Driver receipt; set once the printer accepted the artifact
    printer_reference: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="job", lazy="raise")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "payer_identity": self.payer_identity,
            "display_name": self.display_name,
            "file_name": self.file_name,
            "document_ref": self.document_ref,
            "page_count": self.page_count,
            "cost": self.cost,
            "estimated_minutes": self.estimated_minutes,
            "status": str(self.status),
            "payment_status": str(self.payment_status),
            "progress": self.progress,
            "failure_reason": self.failure_reason,
            "transaction_id": self.transaction_id,
            "printer_reference": self.printer_reference,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(String(32), ForeignKey("print_jobs.id"), index=True, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String, default="INR")
    gateway_reference: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    status: Mapped[PaymentRecordStatus] = mapped_column(String, default=PaymentRecordStatus.PENDING)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    job: Mapped["PrintJob"] = relationship("PrintJob", back_populates="payments")

class QueueTask(Base):
    __tablename__ = "queue_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    job_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    # Scheduling fields
    status: Mapped[TaskStatus] = mapped_column(String, default=TaskStatus.WAITING)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Retry logic
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # Poll query: kind + status=waiting + available_at <= now, priority then FIFO
        Index("ix_queue_tasks_poll", "kind", "status", "priority", "id"),
    )
