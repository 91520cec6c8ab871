"""Auto-linking: fan one note out against the corpus."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from notegraph.exceptions import BulkOperationError, NotegraphError
from notegraph.models.schema import Classification, EdgeStatus, EdgeType, Note
from notegraph.observability import traced
from notegraph.services.edge_service import EdgeService
from notegraph.services.scoring import ScoringEngine
from notegraph.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class LinkingResult:
    """Outcome of linking one note (or the whole corpus).

    Attributes:
        accepted: Pairs classified accepted (written or already current).
        suggested: Pairs classified suggested (written or already current).
        discarded: Pairs below the suggestion threshold with no edge.
        removed: Existing semantic edges deleted because they fell to discard.
        unchanged: Accepted or suggested pairs whose stored edge was already
            current, so nothing was written.
        skipped: Pairs left alone (manual or structural edge, or sibling chunks).
        attempted: Candidate pairs scored, excluding skipped ones.
        failed_ids: IDs of candidate notes whose pair could not be processed.
    """

    accepted: int = 0
    suggested: int = 0
    discarded: int = 0
    removed: int = 0
    unchanged: int = 0
    skipped: int = 0
    attempted: int = 0
    failed_ids: List[str] = field(default_factory=list)

    def merge(self, other: "LinkingResult") -> None:
        self.accepted += other.accepted
        self.suggested += other.suggested
        self.discarded += other.discarded
        self.removed += other.removed
        self.unchanged += other.unchanged
        self.skipped += other.skipped
        self.attempted += other.attempted
        self.failed_ids.extend(other.failed_ids)


def _sibling_chunks(a: Note, b: Note) -> bool:
    return (
        a.is_chunk
        and b.is_chunk
        and a.parent_document_id is not None
        and a.parent_document_id == b.parent_document_id
    )


class LinkingService:
    """Scores a note against candidates and writes semantic edges.

    Re-running on an unchanged note and corpus writes nothing: edge
    identity comes from the canonical pair and unchanged edges are
    detected before writing.

    Args:
        store: Record store.
        edges: Lifecycle manager through which every edge write goes.
        scoring: Scoring engine; defaults to the one ``edges`` uses.
    """

    def __init__(
        self,
        store: RecordStore,
        edges: EdgeService,
        scoring: Optional[ScoringEngine] = None,
    ) -> None:
        self.store = store
        self.edges = edges
        self.scoring = scoring or edges.scoring

    def _link_pair(
        self, note: Note, other: Note, rescore: bool, result: LinkingResult
    ) -> None:
        existing = self.store.edges.get_between(note.id, other.id)
        if existing is not None and existing.edge_type != EdgeType.SEMANTIC:
            result.skipped += 1
            return

        score, components = self.scoring.score(note, other)
        classification = self.scoring.classify(score)

        if classification is Classification.DISCARD:
            if rescore and existing is not None:
                self.edges.delete(note.id, other.id, reason="rescore")
                result.removed += 1
            else:
                result.discarded += 1
            return

        status = classification.to_status()
        # An accepted edge keeps its status; only its score is refreshed
        if existing is not None and existing.status == EdgeStatus.ACCEPTED:
            status = EdgeStatus.ACCEPTED

        _, changed = self.edges.upsert_scored(
            note.id, other.id, score, status, components, reason="auto-link"
        )
        if not changed:
            result.unchanged += 1
        if status == EdgeStatus.ACCEPTED:
            result.accepted += 1
        else:
            result.suggested += 1

    @traced("link_note")
    def link_note(
        self,
        note: Note,
        candidates: Optional[List[Note]] = None,
        rescore: bool = False,
    ) -> LinkingResult:
        """Score ``note`` against every candidate and write edges.

        Args:
            note: The new or freshly edited note.
            candidates: Notes to compare against. Defaults to the whole corpus.
            rescore: Also delete semantic edges that now fall below the
                suggestion threshold.

        Raises:
            BulkOperationError: After every candidate was attempted, if
                any pair failed.
        """
        if candidates is None:
            candidates = self.store.notes.list_all(include_chunks=True)

        result = LinkingResult()
        errors: Dict[str, str] = {}
        for other in candidates:
            if other.id == note.id:
                continue
            if _sibling_chunks(note, other):
                result.skipped += 1
                continue
            result.attempted += 1
            try:
                self._link_pair(note, other, rescore, result)
            except NotegraphError as e:
                logger.warning(f"Auto-link failed for {note.id} <-> {other.id}: {e}")
                errors[other.id] = str(e)
                result.failed_ids.append(other.id)

        logger.debug(
            f"Linked {note.short_id}: {result.accepted} accepted, "
            f"{result.suggested} suggested, {result.removed} removed"
        )
        if errors:
            raise BulkOperationError(
                f"Auto-link failed for {len(errors)} of {result.attempted} pairs",
                operation="auto-link",
                total_count=result.attempted,
                success_count=result.attempted - len(errors),
                failed_ids=list(errors),
                errors=errors,
            )
        return result

    @traced("rescore_all")
    def rescore_all(self) -> LinkingResult:
        """Re-run linking in rescore mode for every note.

        Use after thresholds or embeddings change.
        """
        notes = self.store.notes.list_all(include_chunks=True)
        total = LinkingResult()
        errors: Dict[str, str] = {}
        for note in notes:
            try:
                total.merge(self.link_note(note, candidates=notes, rescore=True))
            except BulkOperationError as e:
                errors[note.id] = e.message
                total.failed_ids.append(note.id)
        logger.info(
            f"Rescored {len(notes)} notes: {total.accepted} accepted, "
            f"{total.suggested} suggested, {total.removed} removed"
        )
        if errors:
            raise BulkOperationError(
                f"Rescoring failed for {len(errors)} of {len(notes)} notes",
                operation="rescore",
                total_count=len(notes),
                success_count=len(notes) - len(errors),
                failed_ids=list(errors),
                errors=errors,
            )
        return total
