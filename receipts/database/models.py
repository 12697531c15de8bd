import enum
from datetime import datetime, date
from typing import Optional, List
from sqlalchemy import BigInteger, String, ForeignKey, Integer, Numeric, Date, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from receipts.database.core import Base

# Enums
class ItemStatus(str, enum.Enum):
    pending = "pending"  # a.k.a. NEW, waiting for OCR or for a user decision
    processing = "processing"
    approved = "approved"
    rejected = "rejected"

class EntityType(str, enum.Enum):
    """Which shape a document currently has. Used as generic subject key of the OCR ledger."""
    incoming_file = "incoming_file"
    bill = "bill"
    receipt = "receipt"

class OcrProcessingStatus(str, enum.Enum):
    in_progress = "in_progress"
    success = "success"
    failed = "failed"


# Amounts are stored as NUMERIC but handled as float in Python
Amount = Numeric(10, 2, asdecimal=False)


# 1. User
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    avatar: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    incoming_files: Mapped[List["IncomingFile"]] = relationship(back_populates="user")


# 2. IncomingFile - uploaded document waiting for OCR and a user decision
class IncomingFile(Base):
    __tablename__ = "incoming_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    filename: Mapped[str] = mapped_column(String(500))
    file_path: Mapped[str] = mapped_column(String(1000))
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    checksum: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[ItemStatus] = mapped_column(String(20), default=ItemStatus.pending.value, index=True)

    # OCR result bundle
    ocr_raw_json: Mapped[Optional[str]] = mapped_column(Text)
    extracted_amount: Mapped[Optional[float]] = mapped_column(Amount)
    extracted_date: Mapped[Optional[date]] = mapped_column(Date)
    extracted_provider: Mapped[Optional[str]] = mapped_column(String(255))
    ocr_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ocr_error_message: Mapped[Optional[str]] = mapped_column(Text)

    user: Mapped["User"] = relationship(back_populates="incoming_files")


# 3. Bill
class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    filename: Mapped[str] = mapped_column(String(500))
    file_path: Mapped[str] = mapped_column(String(1000))
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    checksum: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[ItemStatus] = mapped_column(String(20), default=ItemStatus.pending.value)

    ocr_raw_json: Mapped[Optional[str]] = mapped_column(Text)
    extracted_amount: Mapped[Optional[float]] = mapped_column(Amount)
    extracted_date: Mapped[Optional[date]] = mapped_column(Date)
    extracted_provider: Mapped[Optional[str]] = mapped_column(String(255))
    ocr_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ocr_error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Weak back reference (no FK), the incoming file is deleted after conversion
    original_incoming_file_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)

    receipts: Mapped[List["Receipt"]] = relationship(back_populates="bill")


# 4. Receipt
class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    bill_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bills.id", ondelete="SET NULL"), nullable=True)

    # File metadata is optional: receipts may be entered without a scanned document
    filename: Mapped[Optional[str]] = mapped_column(String(500))
    file_path: Mapped[Optional[str]] = mapped_column(String(1000))
    upload_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    checksum: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[ItemStatus] = mapped_column(String(20), default=ItemStatus.pending.value)

    ocr_raw_json: Mapped[Optional[str]] = mapped_column(Text)
    extracted_amount: Mapped[Optional[float]] = mapped_column(Amount)
    extracted_date: Mapped[Optional[date]] = mapped_column(Date)
    extracted_provider: Mapped[Optional[str]] = mapped_column(String(255))
    ocr_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ocr_error_message: Mapped[Optional[str]] = mapped_column(Text)

    original_incoming_file_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True)

    bill: Mapped[Optional["Bill"]] = relationship(back_populates="receipts")

    @property
    def has_file_metadata(self) -> bool:
        """Receipt still knows where its document lives (required to revert it)"""
        return self.filename is not None and self.file_path is not None


# 5. OcrAttempt - append-only audit row, subject is (entity_type, entity_id)
class OcrAttempt(Base):
    __tablename__ = "ocr_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[EntityType] = mapped_column(String(20))
    entity_id: Mapped[int] = mapped_column(BigInteger)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    attempt_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    ocr_engine_used: Mapped[str] = mapped_column(String(50))
    processing_status: Mapped[OcrProcessingStatus] = mapped_column(String(20), index=True)

    extracted_data_json: Mapped[Optional[str]] = mapped_column(Text)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    raw_response: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_ocr_attempts_entity", "entity_type", "entity_id"),
    )
