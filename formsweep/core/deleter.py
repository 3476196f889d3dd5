"""
Cascading Deleter - removes a token and, for orphans, everything its entity owns
"""
from dataclasses import dataclass

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formsweep.core.classifier import Classification
from formsweep.core.exceptions import CascadeError
from formsweep.core.selector import TokenCandidate
from formsweep.models import CorpusItem, Entity, PublicFormToken, Relationship

logger = structlog.get_logger("form_cleanup.deleter")


@dataclass
class DeletionCounts:
    tokens: int = 0
    relationships: int = 0
    corpus_items: int = 0
    entities: int = 0
    # False when the candidate's own token row was already deleted
    token_removed: bool = False


class CascadingDeleter:
    """
    Executes a disposition inside the caller's transaction.

    Never commits: the caller owns the transaction so all steps land
    together or not at all. Deleting rows that are already gone is a no-op.
    """

    def delete(self, db: Session, candidate: TokenCandidate, classification: Classification) -> DeletionCounts:
        counts = DeletionCounts()
        try:
            if classification.is_live or candidate.entity_id is None:
                counts.tokens = self._delete_token(db, candidate.token)
                counts.token_removed = counts.tokens > 0
                return counts

            # Children first, then every token referencing the entity, then the entity
            counts.relationships = self._delete_relationships(db, candidate.entity_id, classification.relationship_ids)
            counts.corpus_items = self._delete_corpus_items(db, candidate.entity_id)
            counts.tokens = self._delete_token(db, candidate.token)
            counts.token_removed = counts.tokens > 0
            for sibling in classification.sibling_tokens:
                counts.tokens += self._delete_token(db, sibling)
            counts.entities = self._delete_entity(db, candidate.entity_id)
        except SQLAlchemyError as e:
            raise CascadeError(
                f"Cascade delete failed for token {candidate.token}: {e}",
                token=candidate.token,
                original_error=e,
            )
        return counts

    def _delete_token(self, db: Session, token: str) -> int:
        result = db.execute(
            delete(PublicFormToken).where(PublicFormToken.token == token),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount

    def _delete_relationships(self, db: Session, entity_id: str, relationship_ids) -> int:
        if not relationship_ids:
            return 0
        result = db.execute(
            delete(Relationship).where(
                Relationship.id.in_(relationship_ids),
                Relationship.entity_id == entity_id,
            ),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount

    def _delete_corpus_items(self, db: Session, entity_id: str) -> int:
        result = db.execute(
            delete(CorpusItem).where(CorpusItem.entity_id == entity_id),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount

    def _delete_entity(self, db: Session, entity_id: str) -> int:
        result = db.execute(
            delete(Entity).where(Entity.id == entity_id),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount
