"""Visualization Store.

Rows are created by persisting tools and updated only in place through
an explicit id. There is no lookup by content: two identical creation
calls produce two rows.
"""

from typing import Any, Optional

from sqlmodel import Session, col, select

from shared.errors import NotFoundError
from shared.logging import get_logger
from storage.database import Database
from storage.tables import Visualization, utcnow

logger = get_logger(__name__)


class VisualizationStore:
    """Insert, update and select visualization records."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        user_id: str,
        conversation_id: str,
        type: str,
        title: str,
        data: dict[str, Any],
        description: Optional[str] = None,
    ) -> Visualization:
        """Insert a new visualization row and return it once committed."""
        def work(session: Session) -> Visualization:
            visualization = Visualization(
                user_id=user_id,
                conversation_id=conversation_id,
                type=type,
                title=title,
                description=description,
                data=data,
            )
            session.add(visualization)
            session.commit()
            session.refresh(visualization)
            return visualization

        visualization = await self.db.run(work)
        logger.info(
            "Visualization created",
            visualization_id=visualization.id,
            type=type,
            conversation_id=conversation_id,
        )
        return visualization

    async def update(
        self,
        visualization_id: str,
        user_id: str,
        type: str,
        title: str,
        data: dict[str, Any],
        description: Optional[str] = None,
    ) -> Visualization:
        """
        Replace title, description and data of an existing row.

        The owning conversation and the type never change.

        Raises:
            NotFoundError: If no row of this type with this id is owned by
                ``user_id``
        """
        def work(session: Session) -> Optional[Visualization]:
            visualization = session.get(Visualization, visualization_id)
            if visualization is None or visualization.user_id != user_id:
                return None
            if visualization.type != type:
                return None
            visualization.title = title
            visualization.data = data
            if description is not None:
                visualization.description = description
            visualization.updated_at = utcnow()
            session.add(visualization)
            session.commit()
            session.refresh(visualization)
            return visualization

        visualization = await self.db.run(work)
        if visualization is None:
            raise NotFoundError(
                f"Visualization {visualization_id} not found",
                visualization_id=visualization_id,
            )

        logger.info("Visualization updated", visualization_id=visualization_id)
        return visualization

    async def get(self, visualization_id: str) -> Optional[Visualization]:
        def work(session: Session) -> Optional[Visualization]:
            return session.get(Visualization, visualization_id)

        return await self.db.run(work)

    async def list_for_conversation(self, conversation_id: str) -> list[Visualization]:
        """Visualizations of one conversation, oldest first."""
        def work(session: Session) -> list[Visualization]:
            statement = (
                select(Visualization)
                .where(Visualization.conversation_id == conversation_id)
                .order_by(col(Visualization.created_at))
            )
            return list(session.exec(statement).all())

        return await self.db.run(work)
