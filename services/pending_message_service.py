"""
Pending message service: the durable "waiting room".

Fragments from one sender for one market are merged into a single row
until the sender goes quiet. The table is the only shared state between
worker processes; the conditional update in mark_processing() is the only
mutual-exclusion primitive.
"""

from typing import Optional
from datetime import datetime, timedelta, timezone
import structlog

from config import get_supabase_client, settings
from models.pending_message import PendingMessageResponse
from exceptions import DatabaseError
from utils.text_utils import merge_captions, mask_phone

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Serialize a datetime in one fixed format so string filters order correctly."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class PendingMessageService:
    """
    Service for pending submissions.

    Handles:
    - Merging inbound fragments (merge window / stale replace)
    - Finding submissions that went quiet
    - The atomic "mark processing" transition
    - Deleting processed submissions
    """

    def __init__(
        self,
        merge_window_seconds: Optional[int] = None,
        quiet_period_seconds: Optional[int] = None,
        max_accumulation_seconds: Optional[int] = None,
    ):
        self.db = get_supabase_client()
        self.table = "pending_messages"
        self.merge_window = timedelta(
            seconds=settings.merge_window_seconds if merge_window_seconds is None else merge_window_seconds
        )
        self.quiet_period = timedelta(
            seconds=settings.quiet_period_seconds if quiet_period_seconds is None else quiet_period_seconds
        )
        self.max_accumulation = timedelta(
            seconds=(
                settings.max_accumulation_seconds if max_accumulation_seconds is None
                else max_accumulation_seconds
            )
        )

    # ===================
    # LOOKUPS
    # ===================

    def find_open(self, sender_number: str, market_id: str) -> Optional[PendingMessageResponse]:
        """
        Get the non-processing submission for (sender, market), if any.

        Raises:
            DatabaseError: If the query fails
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("sender_number", sender_number)
                .eq("market_id", market_id)
                .eq("is_processing", False)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(
                "pending_message_lookup_failed",
                sender=mask_phone(sender_number),
                market_id=market_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            return None
        return self._row_to_response(result.data[0])

    def is_ready(self, pending: PendingMessageResponse, now: Optional[datetime] = None) -> bool:
        """
        Check readiness of a submission.

        Ready means not processing, and either quiet for the quiet period or
        accumulating for longer than the accumulation cap.
        """
        if pending.is_processing:
            return False
        now = now or utcnow()
        if now - pending.last_updated_at >= self.quiet_period:
            return True
        return now - pending.created_at >= self.max_accumulation

    def get_ready(
        self,
        sender_number: Optional[str] = None,
        market_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> list[PendingMessageResponse]:
        """
        Get submissions that are ready for processing.

        Without filters this is the system-wide sweep query. With sender and
        market it is the deferred check for one submission.

        Args:
            sender_number: Restrict to one sender
            market_id: Restrict to one market
            now: Reference time (defaults to current UTC time)

        Returns:
            Ready submissions, oldest update first

        Raises:
            DatabaseError: If the query fails
        """
        now = now or utcnow()
        quiet_cutoff = to_db_timestamp(now - self.quiet_period)
        age_cutoff = to_db_timestamp(now - self.max_accumulation)

        def base_query():
            query = self.db.table(self.table).select("*").eq("is_processing", False)
            if sender_number:
                query = query.eq("sender_number", sender_number)
            if market_id:
                query = query.eq("market_id", market_id)
            return query

        try:
            quiet = base_query().lte("last_updated_at", quiet_cutoff).execute()
            capped = base_query().lte("created_at", age_cutoff).execute()
        except Exception as e:
            logger.error("ready_pending_messages_query_failed", error=str(e))
            raise DatabaseError("select", str(e))

        by_id: dict[str, PendingMessageResponse] = {}
        for row in (quiet.data or []) + (capped.data or []):
            by_id.setdefault(row["id"], self._row_to_response(row))

        ready = sorted(
            (p for p in by_id.values() if self.is_ready(p, now)),
            key=lambda p: p.last_updated_at
        )

        if ready:
            # Ready only because of the accumulation cap, not the quiet period
            capped_count = sum(
                1 for p in ready if now - p.last_updated_at < self.quiet_period
            )
            logger.info(
                "ready_pending_messages_found",
                count=len(ready),
                capped=capped_count
            )

        return ready

    # ===================
    # MERGER
    # ===================

    def submit_fragment(
        self,
        sender_number: str,
        market_id: str,
        caption: Optional[str],
        media_id: Optional[str],
        wamid: Optional[str],
        now: Optional[datetime] = None
    ) -> PendingMessageResponse:
        """
        Fold an inbound fragment into the sender's pending submission.

        - No open submission → create one from this fragment
        - Open and updated within the merge window → append caption,
          newest image wins
        - Open but older than the merge window → replace its content

        Args:
            sender_number: WhatsApp sender
            market_id: Market the sender posts for
            caption: Text of the fragment (None for a bare image)
            media_id: Image media id (None for text)
            wamid: WhatsApp message id of the fragment
            now: Reference time (defaults to current UTC time)

        Returns:
            The stored submission after the write

        Raises:
            DatabaseError: If the store cannot be read or written
        """
        now = now or utcnow()

        logger.info(
            "submitting_fragment",
            sender=mask_phone(sender_number),
            market_id=market_id,
            has_caption=bool(caption),
            has_image=bool(media_id)
        )

        existing = self.find_open(sender_number, market_id)

        if existing is None:
            return self._create(sender_number, market_id, caption, media_id, wamid, now)

        if now - existing.last_updated_at < self.merge_window:
            update_data = {
                "caption": merge_captions(existing.caption, caption),
                "media_id": media_id or existing.media_id,
                "wamid": wamid,
                "last_updated_at": to_db_timestamp(now),
            }
            action = "merged"
        else:
            # Stale leftovers must not absorb unrelated later messages
            update_data = {
                "caption": caption or None,
                "media_id": media_id,
                "wamid": wamid,
                "created_at": to_db_timestamp(now),
                "last_updated_at": to_db_timestamp(now),
            }
            action = "replaced"

        updated = self._update_open(existing.id, update_data)

        if updated is None:
            # Claimed for processing between our read and write
            logger.info("pending_message_claimed_during_merge", id=existing.id)
            return self._create(sender_number, market_id, caption, media_id, wamid, now)

        logger.info(
            f"pending_message_{action}",
            id=updated.id,
            sender=mask_phone(sender_number),
            caption_length=len(updated.caption or "")
        )
        return updated

    # ===================
    # PROCESSING LIFECYCLE
    # ===================

    def mark_processing(self, message_id: str, now: Optional[datetime] = None) -> bool:
        """
        Atomically flip is_processing from False to True.

        Only one caller can win for a given row; everyone else gets False
        and must leave the row alone.

        Returns:
            True if this caller claimed the row

        Raises:
            DatabaseError: If the update fails
        """
        now = now or utcnow()

        try:
            result = (
                self.db.table(self.table)
                .update({
                    "is_processing": True,
                    "processed_at": to_db_timestamp(now),
                })
                .eq("id", message_id)
                .eq("is_processing", False)
                .execute()
            )
        except Exception as e:
            logger.error("mark_processing_failed", id=message_id, error=str(e))
            raise DatabaseError("update", str(e))

        claimed = bool(result.data)

        if claimed:
            logger.info("pending_message_claimed", id=message_id)
        else:
            logger.info("pending_message_already_processing", id=message_id)

        return claimed

    def delete(self, message_id: str) -> bool:
        """
        Delete a processed submission.

        Returns:
            True if a row was deleted

        Raises:
            DatabaseError: If the delete fails
        """
        try:
            result = self.db.table(self.table).delete().eq("id", message_id).execute()
        except Exception as e:
            logger.error("pending_message_delete_failed", id=message_id, error=str(e))
            raise DatabaseError("delete", str(e))

        deleted = bool(result.data)
        logger.info("pending_message_deleted", id=message_id, deleted=deleted)
        return deleted

    # ===================
    # INTERNALS
    # ===================

    def _create(
        self,
        sender_number: str,
        market_id: str,
        caption: Optional[str],
        media_id: Optional[str],
        wamid: Optional[str],
        now: datetime
    ) -> PendingMessageResponse:
        timestamp = to_db_timestamp(now)
        record = {
            "sender_number": sender_number,
            "market_id": market_id,
            "caption": caption or None,
            "media_id": media_id,
            "wamid": wamid,
            "created_at": timestamp,
            "last_updated_at": timestamp,
            "is_processing": False,
        }

        try:
            result = self.db.table(self.table).insert(record).execute()
        except Exception as e:
            # Unique (sender, market) among open rows: another worker won the insert
            concurrent = self.find_open(sender_number, market_id)
            if concurrent is None:
                logger.error("pending_message_create_failed", error=str(e))
                raise DatabaseError("insert", str(e))

            logger.info("pending_message_insert_raced", id=concurrent.id)
            updated = self._update_open(concurrent.id, {
                "caption": merge_captions(concurrent.caption, caption),
                "media_id": media_id or concurrent.media_id,
                "wamid": wamid,
                "last_updated_at": timestamp,
            })
            if updated is None:
                raise DatabaseError("insert", "pending message claimed during concurrent insert")
            return updated

        if not result.data:
            raise DatabaseError("insert", "No data returned from insert")

        created = self._row_to_response(result.data[0])

        logger.info(
            "pending_message_created",
            id=created.id,
            sender=mask_phone(sender_number),
            market_id=market_id
        )
        return created

    def _update_open(self, message_id: str, update_data: dict) -> Optional[PendingMessageResponse]:
        """Update a row only while it is not processing. None if it was claimed."""
        try:
            result = (
                self.db.table(self.table)
                .update(update_data)
                .eq("id", message_id)
                .eq("is_processing", False)
                .execute()
            )
        except Exception as e:
            logger.error("pending_message_update_failed", id=message_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            return None
        return self._row_to_response(result.data[0])

    def _row_to_response(self, row: dict) -> PendingMessageResponse:
        """Convert database row to response model."""
        return PendingMessageResponse(
            id=row["id"],
            sender_number=row["sender_number"],
            market_id=row["market_id"],
            caption=row.get("caption"),
            media_id=row.get("media_id"),
            wamid=row.get("wamid"),
            created_at=row["created_at"],
            last_updated_at=row["last_updated_at"],
            is_processing=bool(row.get("is_processing")),
            processed_at=row.get("processed_at"),
        )


# Singleton instance
_pending_message_service: Optional[PendingMessageService] = None


def get_pending_message_service() -> PendingMessageService:
    """Get or create PendingMessageService instance."""
    global _pending_message_service
    if _pending_message_service is None:
        _pending_message_service = PendingMessageService()
    return _pending_message_service
