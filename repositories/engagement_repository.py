"""
EngagementRepository - Data access layer for Engagement model
"""

from datetime import datetime
from typing import List, Optional, Iterable
from repositories.base_repository import BaseRepository, PaginationParams, PaginatedResult, SortOrder
from portal_database import Engagement
from services.enums import EngagementStatus
from utils.datetime_utils import utc_now


class EngagementRepository(BaseRepository):
    """Repository for Engagement data access"""

    def __init__(self, session):
        super().__init__(session, Engagement)

    def get_for_owner(self, engagement_id: str, owner_id: int) -> Optional[Engagement]:
        """
        Get an engagement only if it belongs to the given owner.

        Args:
            engagement_id: ID of the engagement
            owner_id: ID of the owning user

        Returns:
            Engagement or None when missing or owned by someone else
        """
        return self.session.query(self.model_class)\
            .filter_by(id=engagement_id, owner_id=owner_id)\
            .first()

    def list_engagements(self,
                         pagination: PaginationParams,
                         owner_id: Optional[int] = None,
                         statuses: Optional[Iterable[EngagementStatus]] = None) -> PaginatedResult:
        """
        Page through engagements, optionally scoped to an owner and statuses.
        """
        filters = {}
        if owner_id is not None:
            filters['owner_id'] = owner_id
        if statuses:
            filters['status'] = list(statuses)
        return self.get_paginated(pagination, filters=filters, order_by='created_at', order=SortOrder.DESC)

    def find_by_external_quote_ref(self, quote_ref: str) -> Optional[Engagement]:
        """
        Find engagement by billing provider quote ID.

        Args:
            quote_ref: Provider quote ID

        Returns:
            Engagement or None if not found
        """
        return self.session.query(self.model_class)\
            .filter_by(external_quote_ref=quote_ref)\
            .first()

    def find_by_external_invoice_ref(self, invoice_ref: str) -> Optional[Engagement]:
        """
        Find engagement by billing provider invoice ID.

        Args:
            invoice_ref: Provider invoice ID

        Returns:
            Engagement or None if not found
        """
        return self.session.query(self.model_class)\
            .filter_by(external_invoice_ref=invoice_ref)\
            .first()

    def find_due_before(self, status: EngagementStatus, cutoff: datetime) -> List:
        """
        Find engagements in a status whose due timestamp has passed.

        Args:
            status: Status to filter by
            cutoff: Due timestamps strictly before this are returned

        Returns:
            List of Engagement objects
        """
        return self.session.query(self.model_class)\
            .filter(self.model_class.status == status)\
            .filter(self.model_class.due.isnot(None))\
            .filter(self.model_class.due < cutoff)\
            .all()

    def find_with_recurrence_rule(self) -> List:
        """Active engagements that carry an agreed recurrence rule"""
        return self.session.query(self.model_class)\
            .filter(self.model_class.recurrence_rule.isnot(None))\
            .filter(self.model_class.status != EngagementStatus.CANCELED)\
            .all()

    def compare_and_set_status(self,
                               engagement_id: str,
                               expected_status: EngagementStatus,
                               new_status: EngagementStatus,
                               **fields) -> bool:
        """
        Move an engagement to a new status only if it is still in the expected one.

        The conditional UPDATE makes concurrent writers race on the database:
        the first commit wins and the loser sees zero affected rows.

        Args:
            engagement_id: ID of the engagement
            expected_status: Status the caller validated against
            new_status: Target status
            **fields: Additional columns written in the same statement

        Returns:
            True if the row was updated, False if the status had moved
        """
        self.session.flush()
        values = dict(fields)
        values['status'] = new_status
        values['updated_at'] = utc_now()

        updated = self.session.query(self.model_class)\
            .filter(self.model_class.id == engagement_id)\
            .filter(self.model_class.status == expected_status)\
            .update(values, synchronize_session=False)

        if updated:
            engagement = self.session.get(self.model_class, engagement_id)
            if engagement is not None:
                self.session.refresh(engagement)
        return updated == 1
