"""Token ring partitioning."""

from pyspark.sql.datasource import InputPartition

# Murmur3Partitioner token bounds
MIN_TOKEN = -(2**63)
MAX_TOKEN = 2**63 - 1


class TokenRange:
    """
    A contiguous slice of the token ring.

    ``start`` is the exclusive lower bound and ``end`` the inclusive upper
    bound. ``None`` means the ring minimum (for ``start``) or the ring maximum
    (for ``end``); use ``lower`` / ``upper`` to get the resolved values.
    """

    __slots__ = ("start", "end")

    def __init__(self, start=None, end=None):
        for token in (start, end):
            if token is not None and not MIN_TOKEN <= token <= MAX_TOKEN:
                raise ValueError(f"Token {token} is outside the ring [{MIN_TOKEN}, {MAX_TOKEN}]")
        if start is not None and end is not None and start >= end:
            raise ValueError(f"Invalid token range: start ({start}) must be lower than end ({end})")
        self.start = start
        self.end = end

    @property
    def lower(self):
        return MIN_TOKEN if self.start is None else self.start

    @property
    def upper(self):
        return MAX_TOKEN if self.end is None else self.end

    @property
    def is_full_ring(self):
        return self.start is None and self.end is None

    def __eq__(self, other):
        if not isinstance(other, TokenRange):
            return NotImplemented
        return self.start == other.start and self.end == other.end

    def __hash__(self):
        return hash((self.start, self.end))

    def __repr__(self):
        return f"TokenRange(start={self.start}, end={self.end})"


def split_token_ring(splits):
    """
    Split the whole token ring into ``splits`` contiguous ranges.

    Consecutive ranges share a boundary (``ranges[i].end == ranges[i + 1].start``),
    the first range has no start and the last one ends at ``MAX_TOKEN`` so the
    remainder of the integer division is absorbed there. A single split is the
    unbounded range.

    Args:
        splits: Number of ranges to produce (>= 1)

    Returns:
        List of TokenRange objects ordered by position on the ring
    """
    if splits < 1:
        raise ValueError(f"Number of splits must be at least 1, got {splits}")
    if splits == 1:
        return [TokenRange()]

    step = (MAX_TOKEN - MIN_TOKEN) // splits

    ranges = []
    for i in range(splits):
        start = None if i == 0 else MIN_TOKEN + i * step
        end = MAX_TOKEN if i == splits - 1 else MIN_TOKEN + (i + 1) * step
        ranges.append(TokenRange(start, end))
    return ranges


class TokenRangePartition(InputPartition):
    """
    Spark input partition reading one split of the token ring.

    Each partition is scanned by its own checkpointed iterator stored under
    ``scan_id``.
    """

    def __init__(self, partition_id, scan_id, token_range):
        """
        Initialize a token range partition.

        Args:
            partition_id: Index of the split
            scan_id: Checkpoint identifier of the split (``<scan_id>_<index>``)
            token_range: TokenRange covered by the partition
        """
        self.partition_id = partition_id
        self.scan_id = scan_id
        self.token_range = token_range

    def __eq__(self, other):
        """Check equality based on partition content."""
        if not isinstance(other, TokenRangePartition):
            return False
        return (
            self.partition_id == other.partition_id and
            self.scan_id == other.scan_id and
            self.token_range == other.token_range
        )

    def __hash__(self):
        """Return hash for use in sets/dicts."""
        return hash((self.partition_id, self.scan_id, self.token_range))

    def __repr__(self):
        """Return string representation."""
        return (f"TokenRangePartition(id={self.partition_id}, "
                f"scan_id={self.scan_id}, range={self.token_range!r})")
