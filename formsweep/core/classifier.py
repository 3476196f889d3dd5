"""
Orphan Classifier - decides whether a candidate's entity is still claimed
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formsweep.core.config import CleanupSettings
from formsweep.core.exceptions import ClassificationError
from formsweep.core.selector import TokenCandidate
from formsweep.models import PublicFormToken, Relationship

logger = structlog.get_logger("form_cleanup.classifier")


class Disposition(str, Enum):
    LIVE = "live"
    ORPHANED = "orphaned"


@dataclass(frozen=True)
class Classification:
    disposition: Disposition
    reason: str
    # Relationships owned by the abandoned session, deleted with the entity
    relationship_ids: Tuple[str, ...] = ()
    # Other expired tokens pointing at the same entity
    sibling_tokens: Tuple[str, ...] = ()

    @property
    def is_live(self) -> bool:
        return self.disposition is Disposition.LIVE


class OrphanClassifier:
    """
    Liveness is judged only from records tied to the token's own entity.
    A relationship that merely shares the product id belongs to somebody
    else and is never a signal here.

    Statuses outside both configured sets count as live: an entity is
    only deleted when every relationship it has is known to be abandoned
    and no unexpired session still points at it.
    """

    def __init__(self, settings: CleanupSettings):
        self.dispositions = settings.status_disposition()

    def classify(self, db: Session, candidate: TokenCandidate, cutoff: datetime) -> Classification:
        if candidate.entity_id is None:
            return Classification(Disposition.ORPHANED, "no_entity")

        try:
            relationships = db.execute(
                select(Relationship.id, Relationship.product_id, Relationship.status)
                .where(Relationship.entity_id == candidate.entity_id)
                .order_by(Relationship.created_at)
            ).all()
            siblings = db.execute(
                select(PublicFormToken.token, PublicFormToken.created_at)
                .where(
                    PublicFormToken.entity_id == candidate.entity_id,
                    PublicFormToken.token != candidate.token,
                )
            ).all()
        except SQLAlchemyError as e:
            raise ClassificationError(
                f"Relationship lookup failed for token {candidate.token}: {e}",
                token=candidate.token,
                original_error=e,
            )

        for rel in relationships:
            status = (rel.status or "").lower()
            disposition = self.dispositions.get(status)
            if disposition == "live":
                logger.debug(
                    "live_relationship_found",
                    token=candidate.token,
                    relationship_id=rel.id,
                    status=status,
                    product_match=rel.product_id == candidate.product_id,
                )
                return Classification(Disposition.LIVE, f"status:{status}")
            if disposition is None:
                logger.warning(
                    "unrecognised_relationship_status",
                    token=candidate.token,
                    relationship_id=rel.id,
                    status=rel.status,
                )
                return Classification(Disposition.LIVE, f"unrecognised_status:{status}")

        expired_siblings = []
        for sibling in siblings:
            if not _is_before(sibling.created_at, cutoff):
                # Visitor reopened the form recently; that session owns the entity now
                return Classification(Disposition.LIVE, "recent_session")
            expired_siblings.append(sibling.token)

        return Classification(
            Disposition.ORPHANED,
            "abandoned_relationship" if relationships else "no_relationship",
            relationship_ids=tuple(rel.id for rel in relationships),
            sibling_tokens=tuple(expired_siblings),
        )


def _is_before(created_at: datetime, cutoff: datetime) -> bool:
    # SQLite hands back naive UTC values
    if created_at.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=None)
    return created_at < cutoff
