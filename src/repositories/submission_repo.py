"""
Repository for submission data access.

All export and encryption-migration SQL for the ``submissions`` table lives
here. Export reads walk the table newest-first with keyset pagination, so
submissions created while an export is running (higher ids) never shift the
batches of the running job.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from src.entities.submission import Submission
from src.repositories.base_repo import BaseRepository
from src.repositories.cursor import KeysetCursor


class SubmissionRepository(BaseRepository[Submission]):
    """
    Repository for submission operations.

    Extends BaseRepository with export queries (filter, count, cursor
    batches) and the queries used by the encryption migration.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=Submission)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    @staticmethod
    def build_export_conditions(
        form_ids: Optional[List[int]],
        status: Optional[str],
        upper_key: Optional[int] = None,
    ) -> list:
        """
        Build WHERE conditions shared by every export query.

        Args:
            form_ids: Form IDs filter (None or empty = all forms)
            status: Status filter (None = any status)
            upper_key: Highest id included; pins an export to the rows that
                existed when it started

        Returns:
            List of SQLAlchemy boolean clauses
        """
        conditions = []
        if form_ids:
            conditions.append(Submission.form_id.in_([abs(int(i)) for i in form_ids]))
        if status:
            conditions.append(Submission.status == status)
        if upper_key is not None:
            conditions.append(Submission.id <= upper_key)
        return conditions

    def export_cursor(
        self,
        form_ids: Optional[List[int]],
        status: Optional[str],
        upper_key: Optional[int] = None,
    ) -> KeysetCursor[Submission]:
        stmt = select(Submission).where(
            *self.build_export_conditions(form_ids, status, upper_key)
        )
        return KeysetCursor(self.session, stmt, Submission.id, descending=True)

    def export_keys_cursor(
        self,
        form_ids: Optional[List[int]],
        status: Optional[str],
        upper_key: Optional[int] = None,
    ) -> KeysetCursor:
        """Cursor over only ``id``, ``data`` and ``data_encrypted`` (key discovery)."""
        stmt = select(Submission.id, Submission.data, Submission.data_encrypted).where(
            *self.build_export_conditions(form_ids, status, upper_key)
        )
        return KeysetCursor(self.session, stmt, Submission.id, descending=True, scalars=False)

    def get_export_batch(
        self,
        form_ids: Optional[List[int]],
        status: Optional[str],
        cursor_id: int,
        limit: int,
        upper_key: Optional[int] = None,
    ) -> List[Submission]:
        """
        Get a batch of submissions with ``id < cursor_id``, newest first.

        Args:
            form_ids: Form IDs filter (None = all forms)
            status: Status filter
            cursor_id: Exclusive upper bound; MAX_CURSOR for the first batch
            limit: Batch size
            upper_key: Highest id included (see build_export_conditions)

        Returns:
            List of Submission entities
        """
        rows, _ = self.export_cursor(form_ids, status, upper_key).next_batch(cursor_id, limit)
        return rows

    def count_for_export(
        self,
        form_ids: Optional[List[int]],
        status: Optional[str],
        upper_key: Optional[int] = None,
    ) -> int:
        return self.count(*self.build_export_conditions(form_ids, status, upper_key))

    def max_export_id(
        self, form_ids: Optional[List[int]], status: Optional[str]
    ) -> Optional[int]:
        """Highest id matching the filter, or None when nothing matches."""
        stmt = select(func.max(Submission.id)).where(
            *self.build_export_conditions(form_ids, status)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def has_edit_info(self) -> bool:
        """True if the edited_at column exists and at least one row was edited."""
        if not self.column_exists("edited_at"):
            return False
        return self.count(Submission.edited_at.is_not(None)) > 0

    # ------------------------------------------------------------------
    # Encryption migration
    # ------------------------------------------------------------------

    @staticmethod
    def _pending_encryption_condition():
        return and_(
            Submission.email.is_not(None),
            Submission.email != "",
            or_(Submission.email_encrypted.is_(None), Submission.email_encrypted == ""),
        )

    def count_pending_encryption(self) -> int:
        return self.count(self._pending_encryption_condition())

    def get_pending_encryption(self, limit: int) -> List[Submission]:
        """
        Oldest submissions that still hold a plaintext email.

        Encrypted rows drop out of this query, so every call simply takes the
        first ``limit`` rows that are still pending.
        """
        stmt = (
            select(Submission)
            .where(self._pending_encryption_condition())
            .order_by(Submission.id.asc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())
