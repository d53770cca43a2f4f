"""
EngagementNoteRepository - Audit notes attached to engagements
"""

from typing import List, Optional
from repositories.base_repository import BaseRepository
from portal_database import EngagementNote
from services.enums import NoteKind


class EngagementNoteRepository(BaseRepository):

    def __init__(self, session):
        super().__init__(session, EngagementNote)

    def add_note(self, engagement_id: str, kind: NoteKind, body: str,
                 author_id: Optional[int] = None) -> EngagementNote:
        return self.create(engagement_id=engagement_id, kind=kind, body=body, author_id=author_id)

    def find_by_engagement_id(self, engagement_id: str, kind: Optional[NoteKind] = None) -> List:
        query = self.session.query(self.model_class).filter_by(engagement_id=engagement_id)
        if kind is not None:
            query = query.filter_by(kind=kind)
        return query.order_by(self.model_class.created_at, self.model_class.id).all()
