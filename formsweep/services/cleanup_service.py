"""
Cleanup Service - removes public form sessions that were never submitted

Flow per run:
    1. Compute one absolute cutoff (now - retention)
    2. Page through tokens created before the cutoff
    3. For each candidate, in its own transaction:
       lock token -> classify entity -> delete token (+ cascade for orphans)
    4. Fold per-candidate results into a run summary and terminal status
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from itertools import repeat
from typing import Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from formsweep.core.classifier import OrphanClassifier
from formsweep.core.config import CleanupSettings
from formsweep.core.deleter import CascadingDeleter, DeletionCounts
from formsweep.core.exceptions import CascadeError, ClassificationError, SelectionError
from formsweep.core.selector import ExpirySelector, TokenCandidate, compute_cutoff
from formsweep.database import session_scope
from formsweep.models import PublicFormToken

logger = structlog.get_logger("form_cleanup")

RUN_COMPLETED = "completed"
RUN_FAILED = "failed"


class CandidateOutcome(str, Enum):
    DELETED = "deleted"            # orphan cascade committed
    TOKEN_ONLY = "token_only"      # entity is live, only the token went
    ALREADY_GONE = "already_gone"  # token removed elsewhere before we got to it
    DEFERRED = "deferred"          # liveness unknown, retried next run
    FAILED = "failed"              # cascade transaction rolled back


@dataclass(frozen=True)
class CandidateResult:
    token: str
    outcome: CandidateOutcome
    counts: Optional[DeletionCounts] = None
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.outcome in (CandidateOutcome.DEFERRED, CandidateOutcome.FAILED)


class RunSummary(BaseModel):
    candidates_seen: int = 0
    deleted: int = 0
    skipped_live: int = 0
    errors: int = 0
    deferred: int = 0
    failed: int = 0
    already_gone: int = 0
    tokens_deleted: int = 0
    relationships_deleted: int = 0
    corpus_items_deleted: int = 0
    entities_deleted: int = 0
    cutoff: Optional[datetime] = None
    dry_run: bool = False

    def record(self, result: CandidateResult) -> None:
        self.candidates_seen += 1
        if result.outcome is CandidateOutcome.DELETED:
            self.deleted += 1
        elif result.outcome is CandidateOutcome.TOKEN_ONLY:
            self.skipped_live += 1
        elif result.outcome is CandidateOutcome.ALREADY_GONE:
            self.already_gone += 1
        elif result.outcome is CandidateOutcome.DEFERRED:
            self.deferred += 1
            self.errors += 1
        elif result.outcome is CandidateOutcome.FAILED:
            self.failed += 1
            self.errors += 1

        if result.counts is not None:
            self.tokens_deleted += result.counts.tokens
            self.relationships_deleted += result.counts.relationships
            self.corpus_items_deleted += result.counts.corpus_items
            self.entities_deleted += result.counts.entities


class RunResult(BaseModel):
    run_id: str
    status: str
    summary: RunSummary
    error: Optional[str] = None

    @classmethod
    def failure(cls, run_id: str, error: str, summary: RunSummary = None) -> "RunResult":
        return cls(run_id=run_id, status=RUN_FAILED, summary=summary or RunSummary(), error=error)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def group_by_entity(page: List[TokenCandidate]) -> List[List[TokenCandidate]]:
    """Split a page into per-entity batches, keeping selection order; entity-less tokens stand alone."""
    groups: Dict[tuple, List[TokenCandidate]] = {}
    for candidate in page:
        key = ("entity", candidate.entity_id) if candidate.entity_id else ("token", candidate.token)
        groups.setdefault(key, []).append(candidate)
    return list(groups.values())


class FormCleanupService:
    """
    Runs one cleanup pass over abandoned public form sessions.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: CleanupSettings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock or utc_now
        self.selector = ExpirySelector(session_factory, batch_size=settings.batch_size)
        self.classifier = OrphanClassifier(settings)
        self.deleter = CascadingDeleter()

    def _lock_token(self, db: Session, candidate: TokenCandidate) -> Optional[TokenCandidate]:
        """Re-read the token inside the transaction; None when it is already gone."""
        try:
            row = db.execute(
                select(PublicFormToken)
                .where(PublicFormToken.token == candidate.token)
                .with_for_update()
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise ClassificationError(
                f"Token lookup failed for {candidate.token}: {e}",
                token=candidate.token,
                original_error=e,
            )
        return TokenCandidate.model_validate(row) if row is not None else None

    def process_candidate(self, candidate: TokenCandidate, cutoff: datetime) -> CandidateResult:
        """
        Classify and delete one candidate in a single transaction.

        Never raises for store errors: they come back as a deferred or
        failed result so the rest of the run carries on.
        """
        try:
            with session_scope(self.session_factory, commit=not self.settings.dry_run) as db:
                current = self._lock_token(db, candidate)
                if current is None:
                    logger.info("candidate_already_gone", token=candidate.token)
                    return CandidateResult(candidate.token, CandidateOutcome.ALREADY_GONE)

                classification = self.classifier.classify(db, current, cutoff)
                logger.info(
                    "candidate_classified",
                    token=current.token,
                    entity_id=current.entity_id,
                    product_id=current.product_id,
                    disposition=classification.disposition.value,
                    reason=classification.reason,
                )
                counts = self.deleter.delete(db, current, classification)

        except ClassificationError as e:
            logger.warning("candidate_deferred", token=candidate.token, error=str(e))
            return CandidateResult(candidate.token, CandidateOutcome.DEFERRED, error=str(e))
        except CascadeError as e:
            logger.error("candidate_failed", token=candidate.token, error=str(e))
            return CandidateResult(candidate.token, CandidateOutcome.FAILED, error=str(e))
        except SQLAlchemyError as e:
            # Commit itself failed; session_scope has rolled back
            logger.error("candidate_failed", token=candidate.token, error=str(e), stage="commit")
            return CandidateResult(candidate.token, CandidateOutcome.FAILED, error=str(e))

        if not counts.token_removed:
            # Another transaction removed the token first, e.g. a sibling cascade
            logger.info("candidate_already_gone", token=candidate.token, stage="delete")
            return CandidateResult(candidate.token, CandidateOutcome.ALREADY_GONE, counts=counts)

        outcome = CandidateOutcome.TOKEN_ONLY if classification.is_live else CandidateOutcome.DELETED
        logger.info(
            "candidate_deleted",
            token=candidate.token,
            outcome=outcome.value,
            tokens=counts.tokens,
            relationships=counts.relationships,
            corpus_items=counts.corpus_items,
            entities=counts.entities,
            dry_run=self.settings.dry_run,
        )
        return CandidateResult(candidate.token, outcome, counts=counts)

    def _process_group(self, group: List[TokenCandidate], cutoff: datetime) -> List[CandidateResult]:
        return [self.process_candidate(candidate, cutoff) for candidate in group]

    def _process_pooled(self, cutoff: datetime, summary: RunSummary) -> None:
        # One page in flight at a time keeps memory bounded on large backlogs.
        # Tokens sharing an entity stay on one worker so their cascades never overlap.
        with ThreadPoolExecutor(
            max_workers=self.settings.max_concurrency,
            thread_name_prefix="form-cleanup",
        ) as pool:
            for page in self.selector.iter_pages(cutoff):
                groups = group_by_entity(page)
                for results in pool.map(self._process_group, groups, repeat(cutoff, len(groups))):
                    for result in results:
                        summary.record(result)

    def run(self, run_id: str, now: datetime = None) -> RunResult:
        now = now or self.clock()
        cutoff = compute_cutoff(now, self.settings.retention)
        summary = RunSummary(cutoff=cutoff, dry_run=self.settings.dry_run)

        logger.info(
            "cleanup_started",
            run_id=run_id,
            cutoff=cutoff.isoformat(),
            retention_value=self.settings.retention.value,
            retention_unit=self.settings.retention.unit,
            batch_size=self.settings.batch_size,
            max_concurrency=self.settings.max_concurrency,
            dry_run=self.settings.dry_run,
        )

        try:
            if self.settings.max_concurrency > 1:
                self._process_pooled(cutoff, summary)
            else:
                for candidate in self.selector.iter_candidates(cutoff):
                    summary.record(self.process_candidate(candidate, cutoff))
        except SelectionError as e:
            logger.error("cleanup_failed", run_id=run_id, stage="selection", error=str(e), **summary.model_dump(mode="json"))
            return RunResult.failure(run_id, str(e), summary)

        if (
            self.settings.fatal_if_all_candidates_fail
            and summary.candidates_seen > 0
            and summary.errors == summary.candidates_seen
        ):
            error = f"All {summary.candidates_seen} candidates failed"
            logger.error("cleanup_failed", run_id=run_id, stage="processing", error=error, **summary.model_dump(mode="json"))
            return RunResult.failure(run_id, error, summary)

        logger.info("cleanup_completed", run_id=run_id, **summary.model_dump(mode="json"))
        return RunResult(run_id=run_id, status=RUN_COMPLETED, summary=summary)
