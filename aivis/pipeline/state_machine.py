"""
Pipeline State Machine

Tracks which stage a (domain, version) is in and stores each stage's payload.
Rows in onboarding_progress are only ever touched from here.

Serialization per (domain, version):
- the row is read with SELECT ... FOR UPDATE (PostgreSQL)
- the composite unique constraint gates the first insert; a racing insert
  surfaces as ConcurrencyConflict
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aivis.database.models import OnboardingProgress
from aivis.database.repository import get_version
from aivis.errors import ConcurrencyConflict, InvalidTransition
from .stages import Stage, parse_step_data, stage_of

logger = logging.getLogger(__name__)


@dataclass
class PipelineState:
    """Snapshot of a (domain, version) pipeline."""
    domain_id: int
    version_id: int
    current_step: Stage = Stage.SUBMISSION
    is_completed: bool = False
    step_data: Dict[Stage, BaseModel] = field(default_factory=dict)
    first_analysis_at: Optional[datetime] = None

    def payload(self, stage: Stage) -> Optional[BaseModel]:
        return self.step_data.get(stage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domainId": self.domain_id,
            "versionId": self.version_id,
            "currentStep": int(self.current_step),
            "stage": self.current_step.key,
            "isCompleted": self.is_completed,
            "stepData": {
                stage.key: payload.model_dump(mode="json")
                for stage, payload in sorted(self.step_data.items())
            },
            "firstAnalysisAt": self.first_analysis_at.isoformat() if self.first_analysis_at else None,
        }


class PipelineStateMachine:
    """
    Advance, resume and rewind the onboarding pipeline.

    Every mutating call commits its own transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def resume(self, domain_id: int, version_id: int) -> PipelineState:
        """
        Return the persisted state, or a fresh SUBMISSION state if none exists.

        Nothing is written for a domain that has never been advanced.
        """
        row = self._get_row(domain_id, version_id)
        if row is None:
            return PipelineState(domain_id=domain_id, version_id=version_id)
        return self._to_state(row)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def advance(self, domain_id: int, version_id: int, payload: BaseModel) -> PipelineState:
        """
        Store the payload for the current stage and move forward by one.

        Raises:
            InvalidTransition: pipeline already completed, or the payload is
                not for the current stage
            ConcurrencyConflict: lost the race to create the progress row
        """
        stage = stage_of(payload)
        try:
            row = self._lock_or_create(domain_id, version_id)

            if row.is_completed:
                raise InvalidTransition(
                    f"Pipeline for domain {domain_id} version {version_id} is already completed"
                )
            current = Stage(row.current_step)
            if stage != current:
                raise InvalidTransition(
                    f"Cannot submit {stage.key} data while at {current.key}"
                )
            if current == Stage.terminal():
                raise InvalidTransition("The report stage is recorded, not advanced past")

            self._store_payload(row, stage, payload)
            row.current_step = current + 1
            if row.current_step == Stage.terminal():
                row.is_completed = True
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Domain {domain_id} version {version_id}: {stage.key} -> {Stage(row.current_step).key}"
        )
        return self._to_state(row)

    def record(self, domain_id: int, version_id: int, payload: BaseModel) -> PipelineState:
        """Store the payload of the current stage without moving."""
        stage = stage_of(payload)
        try:
            row = self._lock_or_create(domain_id, version_id)
            if stage != Stage(row.current_step):
                raise InvalidTransition(
                    f"Cannot record {stage.key} data while at {Stage(row.current_step).key}"
                )
            self._store_payload(row, stage, payload)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self._to_state(row)

    def rewind(self, domain_id: int, version_id: int) -> PipelineState:
        """Step back by one stage. No-op at the first stage."""
        row = self._get_row(domain_id, version_id, for_update=True)
        if row is None or row.current_step <= Stage.SUBMISSION:
            self.db.rollback()
            return self.resume(domain_id, version_id)

        row.current_step = row.current_step - 1
        row.is_completed = False
        self.db.commit()
        logger.info(f"Domain {domain_id} version {version_id}: rewound to {Stage(row.current_step).key}")
        return self._to_state(row)

    def mark_first_analysis(self, domain_id: int, version_id: int) -> bool:
        """
        Stamp the first-time analysis on a completed pipeline.

        Returns:
            True if this call set the stamp, False if it was already set
        """
        row = self._get_row(domain_id, version_id, for_update=True)
        if row is None or not row.is_completed:
            self.db.rollback()
            raise InvalidTransition(
                f"Pipeline for domain {domain_id} version {version_id} has not reached the report stage"
            )
        if row.first_analysis_at is not None:
            self.db.rollback()
            return False
        row.first_analysis_at = datetime.utcnow()
        self.db.commit()
        return True

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get_row(self, domain_id: int, version_id: int, for_update: bool = False) -> Optional[OnboardingProgress]:
        query = self.db.query(OnboardingProgress).filter(
            OnboardingProgress.domain_id == domain_id,
            OnboardingProgress.domain_version_id == version_id,
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def _lock_or_create(self, domain_id: int, version_id: int) -> OnboardingProgress:
        row = self._get_row(domain_id, version_id, for_update=True)
        if row is not None:
            return row

        get_version(self.db, domain_id, version_id)
        row = OnboardingProgress(
            domain_id=domain_id,
            domain_version_id=version_id,
            current_step=int(Stage.SUBMISSION),
            is_completed=False,
            step_data={},
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ConcurrencyConflict(
                f"Progress for domain {domain_id} version {version_id} was created concurrently"
            ) from e
        return row

    @staticmethod
    def _store_payload(row: OnboardingProgress, stage: Stage, payload: BaseModel) -> None:
        # Reassign so the JSON column is flagged dirty
        data = dict(row.step_data or {})
        data[stage.key] = payload.model_dump(mode="json")
        row.step_data = data

    @staticmethod
    def _to_state(row: OnboardingProgress) -> PipelineState:
        return PipelineState(
            domain_id=row.domain_id,
            version_id=row.domain_version_id,
            current_step=Stage(row.current_step),
            is_completed=bool(row.is_completed),
            step_data=parse_step_data(row.step_data),
            first_analysis_at=row.first_analysis_at,
        )
