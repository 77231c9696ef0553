"""Content hashing helpers used when naming and fingerprinting saved entries."""

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import pandas as pd


def compute_dataframe_hash(df: "pd.DataFrame") -> str:
    """Compute a deterministic SHA256 hash of a DataFrame's content.

    Args:
        df: Pandas DataFrame to hash

    Returns:
        SHA256 hex digest string (64 characters)

    Example:
        >>> df = pd.DataFrame({"key": ["a", "b"]})
        >>> compute_dataframe_hash(df) == compute_dataframe_hash(df.copy())
        True
    """
    if df.empty and len(df.columns) == 0:
        return hashlib.sha256(b"EMPTY_DATAFRAME").hexdigest()

    csv_bytes = df.to_csv(index=False).encode("utf-8")
    return hashlib.sha256(csv_bytes).hexdigest()


def short_hash(*parts: str, length: int = 6) -> str:
    """Stable short hex digest of the joined ``parts``."""
    joined = "\x1f".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:length]
