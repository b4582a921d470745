"""
State tracker - maps a filename to its processing state inside one namespace
of the idempotency store.
"""
import enum
import logging

from document_conversion_platform.db.idempotency_store import UNAVAILABLE

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 24 * 60 * 60  # 5 days


class FileState(enum.Enum):
    NEW = "NEW"                # no record in the store
    READ = "READ"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    UNKNOWN = "UNKNOWN"        # store unreachable, never written


class StateTracker:
    """
    Per-namespace view of file states.

    The platform uses two namespaces: one recording that a file has been read
    from the input directory (claim state READ) and one recording that it has
    been claimed for, or finished, conversion (claim state PROCESSING).
    """

    def __init__(self, store, namespace, claim_state=FileState.PROCESSING,
                 ttl=DEFAULT_TTL, key_prefix="docx-pdf-idempotent:"):
        """
        Args:
            store: IdempotencyStore instance (shared connection pool)
            namespace: Logical namespace, e.g. 'read' or 'processed'
            claim_state: State written by try_claim
            ttl: Seconds before a record expires
            key_prefix: Prefix shared by every key of the platform
        """
        if claim_state in (FileState.NEW, FileState.UNKNOWN):
            raise ValueError(f"{claim_state.value} cannot be stored")
        self.store = store
        self.namespace = namespace
        self.claim_state = claim_state
        self.ttl = ttl
        self.key_prefix = key_prefix

    def key(self, filename):
        return f"{self.key_prefix}{self.namespace}:{filename}"

    def try_claim(self, filename):
        """
        Atomically move filename from NEW to the claim state.

        Returns:
            True for the single caller that wins; False for every other caller
            and whenever the store is unreachable.
        """
        claimed = self.store.set_if_absent(self.key(filename), self.claim_state.value, self.ttl)
        if claimed:
            logger.debug(f"namespace={self.namespace} event=claimed file={filename} state={self.claim_state.value}")
        else:
            logger.debug(f"namespace={self.namespace} event=claim_rejected file={filename}")
        return claimed

    def mark_processed(self, filename):
        """Overwrite the record with PROCESSED, restarting its TTL"""
        marked = self.store.set(self.key(filename), FileState.PROCESSED.value, self.ttl)
        if not marked:
            logger.warning(f"namespace={self.namespace} event=mark_processed_failed file={filename}")
        return marked

    def state(self, filename):
        """Return the FileState of filename (UNKNOWN if the store cannot tell)"""
        value = self.store.get(self.key(filename))
        if value is UNAVAILABLE:
            return FileState.UNKNOWN
        if value is None:
            return FileState.NEW
        try:
            state = FileState(value)
        except ValueError:
            logger.warning(f"namespace={self.namespace} event=unrecognised_state file={filename} value={value}")
            return FileState.UNKNOWN
        if state in (FileState.NEW, FileState.UNKNOWN):
            return FileState.UNKNOWN
        return state

    def is_in_state(self, filename, state):
        """True if a record exists for filename and holds state"""
        key = self.key(filename)
        if self.store.exists(key) is not True:
            return False
        return self.store.get(key) == state.value

    def remove(self, filename):
        """Delete the record, making filename eligible again immediately"""
        removed = self.store.delete(self.key(filename))
        if removed:
            logger.info(f"namespace={self.namespace} event=record_removed file={filename}")
        return removed
