# services/peer_sync_service.py
import logging
from typing import Any, Dict, List

from services.record_store import RecordStore
from utils.changeset import count_changes, normalize_changes

logger = logging.getLogger(__name__)


def _overlay(changes: Dict[str, List[dict]], fresh: Dict[str, List[dict]]) -> Dict[str, List[dict]]:
    """Replace (or append) rows of ``changes`` by their fresh copies, matched on id."""
    merged = {}
    for key in ("blocks", "operations"):
        rows = {row["id"]: row for row in changes[key]}
        rows.update({row["id"]: row for row in fresh[key]})
        merged[key] = list(rows.values())
    return merged


class PeerSyncService:
    """Server half of the exchange: apply the client's changes, answer with ours."""

    @staticmethod
    def sync(payload: Any) -> Dict[str, List[dict]]:
        client_changes = normalize_changes(payload)

        # taken before applying, so the client's own rows are not echoed back
        server_changes = RecordStore.get_pending_changes()

        merge = RecordStore.apply_server_changes(client_changes, resolve_ties=True)
        settled = RecordStore.mark_as_synced(client_changes, held=merge)

        if merge.bumped_blocks or merge.bumped_operations:
            # the client must see the re-versioned copies that won the tie
            server_changes = _overlay(
                server_changes, RecordStore.get_rows(merge.bumped_blocks, merge.bumped_operations)
            )

        logger.info(
            "peer sync: received %d, applied %d, skipped %d, conflicts %d, settled %d, answered %d",
            count_changes(client_changes),
            merge.applied_blocks + merge.applied_operations,
            len(merge.skipped),
            len(merge.conflicts),
            settled,
            count_changes(server_changes),
        )
        return server_changes
