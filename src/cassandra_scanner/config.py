"""Scanner configuration."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ScannerConfig:
    """Configuration shared by every iterator a Scanner builds."""

    # Save the checkpoint every N consumed rows (0 disables auto-save)
    auto_save_interval: int = 0
    # Driver page size, None keeps the session default
    fetch_size: Optional[int] = None

    def __post_init__(self):
        if self.auto_save_interval < 0:
            raise ValueError(
                f"auto_save_interval must be >= 0, got {self.auto_save_interval}"
            )
        if self.fetch_size is not None and self.fetch_size <= 0:
            raise ValueError(f"fetch_size must be positive, got {self.fetch_size}")

    @classmethod
    def from_options(cls, options, default_auto_save_interval=0):
        """Build a config from a string option map (Spark data source options)."""
        fetch_size = options.get("fetch_size")
        return cls(
            auto_save_interval=int(options.get("auto_save_interval", default_auto_save_interval)),
            fetch_size=int(fetch_size) if fetch_size is not None else None,
        )
