"""
Category Service

Global categories (user_id None) are shared defaults and read-only.
Users may add, rename and delete their own.
"""

from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from src.audit import AuditLogger
from src.ledger.errors import (
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from src.models.audit import AuditEventType
from src.models.ledger import Category
from src.services.storage import CategoryStoreInterface, StorageError


logger = structlog.get_logger(__name__)


class CategoryService:
    """CRUD over categories with global/own visibility rules."""

    def __init__(
        self,
        store: CategoryStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger

    async def _call(self, operation: str, call):
        try:
            return await call
        except StorageError as e:
            logger.error("store_unavailable", operation=operation, error=str(e))
            raise StoreUnavailableError(f"{operation} failed: {e}") from e

    @staticmethod
    def _build(fields: dict) -> Category:
        try:
            return Category.model_validate(fields)
        except PydanticValidationError as e:
            issues = [
                {"field": ".".join(str(p) for p in err["loc"]), "type": err["type"],
                 "message": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(
                "; ".join(f"{i['field']}: {i['message']}" for i in issues),
                issues=issues,
            ) from e

    async def _audit(self, event_type: AuditEventType, category: Category, user_id: str) -> None:
        if self._audit_logger:
            await self._audit_logger.log_category_changed(
                event_type=event_type,
                category_id=category.id,
                user_id=user_id,
                name=category.name,
            )

    async def _require_own(self, user_id: str, category_id: UUID) -> Category:
        category = await self._call("get_category", self._store.get_category(category_id))
        # Global and foreign categories are not editable by this user
        if category is None or category.user_id != user_id:
            raise NotFoundError("category", category_id)
        return category

    async def list_categories(self, user_id: str) -> list[Category]:
        """Global categories plus the user's own, sorted by name."""
        return await self._call("list_categories", self._store.list_categories(user_id))

    async def get_category(self, user_id: str, category_id: UUID) -> Category:
        category = await self._call("get_category", self._store.get_category(category_id))
        if category is None or not category.visible_to(user_id):
            raise NotFoundError("category", category_id)
        return category

    async def create_category(
        self,
        user_id: str,
        name: str,
        parent_id: Optional[UUID] = None,
    ) -> Category:
        """
        Add a user-owned category.

        Raises:
            NotFoundError: parent_id is not visible to the user
            ValidationError: Name empty or too long
        """
        if parent_id is not None:
            await self.get_category(user_id, parent_id)

        category = await self._call(
            "insert_category",
            self._store.insert_category(
                self._build({"user_id": user_id, "name": name, "parent_id": parent_id})
            ),
        )
        logger.info("category_created", category_id=str(category.id))
        await self._audit(AuditEventType.CATEGORY_CREATED, category, user_id)
        return category

    async def rename_category(self, user_id: str, category_id: UUID, name: str) -> Category:
        category = await self._require_own(user_id, category_id)
        renamed = await self._call(
            "update_category",
            self._store.update_category(
                self._build({**category.model_dump(), "name": name})
            ),
        )
        logger.info("category_updated", category_id=str(category_id))
        await self._audit(AuditEventType.CATEGORY_UPDATED, renamed, user_id)
        return renamed

    async def delete_category(self, user_id: str, category_id: UUID) -> None:
        """
        Delete an own category.

        Raises:
            NotFoundError: Absent, global, or owned by another user
            ConflictError: Another category uses it as parent
        """
        category = await self._require_own(user_id, category_id)

        visible = await self.list_categories(user_id)
        children = [c for c in visible if c.parent_id == category_id]
        if children:
            raise ConflictError(
                f"Category has {len(children)} subcategories",
                {"category_id": str(category_id), "children": [str(c.id) for c in children]},
            )

        await self._call("delete_category", self._store.delete_category(category_id))
        logger.info("category_deleted", category_id=str(category_id))
        await self._audit(AuditEventType.CATEGORY_DELETED, category, user_id)
