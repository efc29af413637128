"""Checkpointed scan state and its persistence."""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from .errors import CheckpointDecodeError, CheckpointEncodeError

logger = logging.getLogger(__name__)


@dataclass
class ScanState:
    """Cursor state of one scan, persisted as its checkpoint."""

    # Token of the last consumed row, used to resume and to estimate progress
    last_token: Optional[int] = None
    rows_read: int = 0
    finished: bool = False

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'ScanState':
        """
        Create from a decoded checkpoint record.

        Missing fields take their zero value. Fields of the wrong type raise
        CheckpointDecodeError.
        """
        if not isinstance(data, dict):
            raise CheckpointDecodeError(f'Scan state should be an object, got {type(data).__name__}')

        last_token = data.get('last_token')
        rows_read = data.get('rows_read', 0)
        finished = data.get('finished', False)

        if last_token is not None and (isinstance(last_token, bool) or not isinstance(last_token, int)):
            raise CheckpointDecodeError(f'Invalid last_token in scan state: {last_token!r}')
        if isinstance(rows_read, bool) or not isinstance(rows_read, int):
            raise CheckpointDecodeError(f'Invalid rows_read in scan state: {rows_read!r}')
        if not isinstance(finished, bool):
            raise CheckpointDecodeError(f'Invalid finished flag in scan state: {finished!r}')

        return cls(last_token=last_token, rows_read=rows_read, finished=finished)


def encode_state(state: ScanState) -> bytes:
    try:
        return json.dumps(state.to_dict()).encode('utf-8')
    except (TypeError, ValueError) as e:
        raise CheckpointEncodeError(f'Could not encode scan state: {e}') from e


def decode_state(data: bytes) -> ScanState:
    try:
        decoded = json.loads(data.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise CheckpointDecodeError(f'Could not decode scan state: {e}') from e
    return ScanState.from_dict(decoded)


class ScanStateRepository:
    """
    Reads and writes ScanState checkpoints through a CheckpointStore.

    An empty payload means "no checkpoint": it is what a reset writes and it
    loads back exactly like a missing key.
    """

    def __init__(self, store):
        self.store_backend = store

    def load(self, scan_id: str) -> Optional[ScanState]:
        data = self.store_backend.load(scan_id)
        if not data:
            return None
        return decode_state(data)

    def store(self, scan_id: str, state: Optional[ScanState]) -> None:
        encoded = b'' if state is None else encode_state(state)
        self.store_backend.store(scan_id, encoded)
        logger.debug(f'Stored checkpoint {scan_id}: {state}')

    def load_prefix(self, prefix: str) -> Dict[str, ScanState]:
        """Load every non-empty checkpoint whose id starts with ``prefix``."""
        return {
            scan_id: decode_state(data)
            for scan_id, data in self.store_backend.load_prefix(prefix).items()
            if data
        }
