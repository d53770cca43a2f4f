"""
LineItemRepository - Data access layer for LineItem model
"""

from typing import List, Dict, Any
from repositories.base_repository import BaseRepository
from portal_database import LineItem


class LineItemRepository(BaseRepository):
    """Repository for LineItem data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, LineItem)

    def find_by_engagement_id(self, engagement_id: str) -> List:
        """
        Find all line items for an engagement in entry order.

        Args:
            engagement_id: ID of the engagement

        Returns:
            List of LineItem objects
        """
        return self.session.query(self.model_class)\
            .filter_by(engagement_id=engagement_id)\
            .order_by(self.model_class.position)\
            .all()

    def bulk_create_line_items(self, engagement_id: str, line_items_data: List[Dict[str, Any]]) -> List:
        """
        Create multiple line items for an engagement.

        Args:
            engagement_id: ID of the engagement
            line_items_data: Validated line item dictionaries

        Returns:
            List of created LineItem objects
        """
        created_items = [
            LineItem(
                engagement_id=engagement_id,
                position=position,
                description=item_data['description'],
                quantity=item_data['quantity'],
                unit_amount_cents=item_data['unit_amount_cents'],
            )
            for position, item_data in enumerate(line_items_data)
        ]

        if created_items:
            self.session.add_all(created_items)
            self.session.flush()

        return created_items

    def delete_by_engagement_id(self, engagement_id: str) -> int:
        """
        Delete all line items for an engagement.

        Returns:
            Number of items deleted
        """
        line_items = self.find_by_engagement_id(engagement_id)
        for item in line_items:
            self.session.delete(item)
        self.session.flush()
        return len(line_items)

    def replace_for_engagement(self, engagement_id: str, line_items_data: List[Dict[str, Any]]) -> List:
        """Swap the full set of line items of an engagement"""
        self.delete_by_engagement_id(engagement_id)
        return self.bulk_create_line_items(engagement_id, line_items_data)
