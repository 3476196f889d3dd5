"""
Expiry Selector - lists public form tokens older than the retention cutoff
"""
from datetime import datetime, timezone
from typing import Iterator, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from formsweep.core.config import RetentionWindow
from formsweep.core.exceptions import SelectionError
from formsweep.database import session_scope
from formsweep.models import PublicFormToken

logger = structlog.get_logger("form_cleanup.selector")


class TokenCandidate(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    token: str
    product_id: str
    entity_id: Optional[str] = None
    created_at: datetime

    @field_validator('entity_id', mode='before')
    @classmethod
    def blank_entity_is_absent(cls, v):
        """An empty key never identifies an entity"""
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v


def compute_cutoff(now: datetime, retention: RetentionWindow) -> datetime:
    """
    Absolute cutoff for one run: tokens created strictly before it expire.

    Naive ``now`` values are taken as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc) - retention.as_timedelta()


class ExpirySelector:
    def __init__(self, session_factory: sessionmaker, batch_size: int = 500):
        self.session_factory = session_factory
        self.batch_size = batch_size

    def _fetch_page(self, cutoff: datetime, after: Optional[tuple]) -> List[TokenCandidate]:
        query = select(PublicFormToken).where(PublicFormToken.created_at < cutoff)
        if after is not None:
            last_created, last_token = after
            query = query.where(
                or_(
                    PublicFormToken.created_at > last_created,
                    and_(PublicFormToken.created_at == last_created, PublicFormToken.token > last_token),
                )
            )
        query = query.order_by(PublicFormToken.created_at, PublicFormToken.token).limit(self.batch_size)

        try:
            with session_scope(self.session_factory, commit=False) as db:
                rows = db.execute(query).scalars().all()
                return [TokenCandidate.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error("candidate_page_failed", cutoff=cutoff.isoformat(), after=str(after), error=str(e))
            raise SelectionError(f"Could not list expired tokens: {e}", original_error=e)

    def iter_pages(self, cutoff: datetime) -> Iterator[List[TokenCandidate]]:
        """
        Yield candidate pages ordered by (created_at, token).

        Keyset paging keeps later pages stable while earlier candidates are
        being deleted or deferred.
        """
        after = None
        while True:
            page = self._fetch_page(cutoff, after)
            if not page:
                return
            yield page
            if len(page) < self.batch_size:
                return
            last = page[-1]
            after = (last.created_at, last.token)

    def iter_candidates(self, cutoff: datetime) -> Iterator[TokenCandidate]:
        for page in self.iter_pages(cutoff):
            yield from page
