"""
OCR attempt ledger.

Every extraction attempt is stored against a generic subject
(entity_type, entity_id) instead of a foreign key, so the history
survives a document changing shape (IncomingFile -> Bill -> ...).
Attempts are only ever appended, updated once (IN_PROGRESS -> SUCCESS/FAILED),
copied to a new subject, or bulk deleted.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from receipts.database.models import EntityType, OcrAttempt, OcrProcessingStatus
from receipts.services.user_service import get_user_by_email


@dataclass
class OcrStatistics:
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    in_progress_attempts: int = 0
    per_engine_counts: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, int]:
        stats = {
            "totalAttempts": self.total_attempts,
            "successfulAttempts": self.successful_attempts,
            "failedAttempts": self.failed_attempts,
            "inProgressAttempts": self.in_progress_attempts,
        }
        stats.update({f"engine_{name}": count for name, count in self.per_engine_counts.items()})
        return stats


def _subject(entity_type: EntityType) -> str:
    return EntityType(entity_type).value


async def record_ocr_attempt(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    user_email: str,
    ocr_engine_used: str,
    processing_status: OcrProcessingStatus,
    extracted_data_json: Optional[str] = None,
    error_message: Optional[str] = None,
    raw_response: Optional[str] = None
) -> Optional[OcrAttempt]:
    """Append a new attempt owned by the user. None if the user is unknown."""
    user = await get_user_by_email(session, user_email)
    if not user:
        logging.warning(f"Cannot record OCR attempt for {_subject(entity_type)} {entity_id}: user {user_email} not found")
        return None

    attempt = OcrAttempt(
        entity_type=_subject(entity_type),
        entity_id=entity_id,
        user_id=user.id,
        attempt_timestamp=datetime.now(timezone.utc),
        ocr_engine_used=ocr_engine_used,
        processing_status=OcrProcessingStatus(processing_status).value,
        extracted_data_json=extracted_data_json,
        error_message=error_message,
        raw_response=raw_response
    )
    session.add(attempt)
    await session.commit()
    return attempt


async def update_attempt_status(
    session: AsyncSession,
    attempt_id: int,
    processing_status: OcrProcessingStatus,
    extracted_data_json: Optional[str] = None,
    error_message: Optional[str] = None,
    raw_response: Optional[str] = None
) -> Optional[OcrAttempt]:
    """
    Move an attempt to its final status.
    Fields passed as None keep their previous value.
    """
    attempt = await session.get(OcrAttempt, attempt_id)
    if not attempt:
        logging.warning(f"OCR attempt {attempt_id} not found")
        return None

    attempt.processing_status = OcrProcessingStatus(processing_status).value
    if extracted_data_json is not None:
        attempt.extracted_data_json = extracted_data_json
    if error_message is not None:
        attempt.error_message = error_message
    if raw_response is not None:
        attempt.raw_response = raw_response

    await session.commit()
    return attempt


async def _find_user_attempts(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    user_id: int
) -> List[OcrAttempt]:
    stmt = (
        select(OcrAttempt)
        .where(
            OcrAttempt.entity_type == _subject(entity_type),
            OcrAttempt.entity_id == entity_id,
            OcrAttempt.user_id == user_id
        )
        .order_by(OcrAttempt.attempt_timestamp, OcrAttempt.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_ocr_history(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    user_email: str
) -> List[OcrAttempt]:
    """All attempts for the subject that belong to the user, oldest first"""
    user = await get_user_by_email(session, user_email)
    if not user:
        return []
    return await _find_user_attempts(session, entity_type, entity_id, user.id)


async def get_latest_ocr_attempt(
    session: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    user_email: str
) -> Optional[OcrAttempt]:
    user = await get_user_by_email(session, user_email)
    if not user:
        return None

    stmt = (
        select(OcrAttempt)
        .where(
            OcrAttempt.entity_type == _subject(entity_type),
            OcrAttempt.entity_id == entity_id
        )
        .order_by(OcrAttempt.attempt_timestamp.desc(), OcrAttempt.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    latest = result.scalar_one_or_none()

    # Latest attempt of somebody else's document is not visible
    if latest is None or latest.user_id != user.id:
        return None
    return latest


async def get_ocr_statistics(session: AsyncSession, user_email: str) -> Optional[OcrStatistics]:
    user = await get_user_by_email(session, user_email)
    if not user:
        return None

    result = await session.execute(select(OcrAttempt).where(OcrAttempt.user_id == user.id))
    attempts = list(result.scalars().all())

    statuses = Counter(a.processing_status for a in attempts)
    return OcrStatistics(
        total_attempts=len(attempts),
        successful_attempts=statuses[OcrProcessingStatus.success.value],
        failed_attempts=statuses[OcrProcessingStatus.failed.value],
        in_progress_attempts=statuses[OcrProcessingStatus.in_progress.value],
        per_engine_counts=dict(Counter(a.ocr_engine_used for a in attempts))
    )


async def transfer_ocr_history(
    session: AsyncSession,
    from_entity_type: EntityType,
    from_entity_id: int,
    to_entity_type: EntityType,
    to_entity_id: int,
    user_email: str,
    commit: bool = True
) -> bool:
    """
    Copy the user's attempts from one subject to another.

    Source attempts are left untouched, removing them is up to the caller.
    With commit=False the copies are only flushed, so the transfer can be
    part of a larger transaction (entity conversion).
    """
    user = await get_user_by_email(session, user_email)
    if not user:
        return False

    attempts = await _find_user_attempts(session, from_entity_type, from_entity_id, user.id)
    for attempt in attempts:
        session.add(OcrAttempt(
            entity_type=_subject(to_entity_type),
            entity_id=to_entity_id,
            user_id=attempt.user_id,
            attempt_timestamp=attempt.attempt_timestamp,
            ocr_engine_used=attempt.ocr_engine_used,
            processing_status=attempt.processing_status,
            extracted_data_json=attempt.extracted_data_json,
            error_message=attempt.error_message,
            raw_response=attempt.raw_response
        ))

    if commit:
        await session.commit()
    else:
        await session.flush()

    logging.info(
        f"Copied {len(attempts)} OCR attempts from {_subject(from_entity_type)} {from_entity_id} "
        f"to {_subject(to_entity_type)} {to_entity_id}"
    )
    return True


async def delete_ocr_history(session: AsyncSession, entity_type: EntityType, entity_id: int) -> int:
    """Remove every attempt of the subject regardless of owner. Returns number of rows removed."""
    stmt = delete(OcrAttempt).where(
        OcrAttempt.entity_type == _subject(entity_type),
        OcrAttempt.entity_id == entity_id
    )
    result = await session.execute(stmt)
    await session.commit()

    return result.rowcount
