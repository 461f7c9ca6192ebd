"""
specsync - keep spec documents consistent across stores.

Each spec lives as a Markdown file, a row in a local SQLite database and
a GitHub issue. specsync moves specs through their phases and keeps the
three representations in agreement.
"""

__version__ = "0.1.0"

from specsync.core.config.models import SpecSyncConfig
from specsync.core.specs.models import Phase, SpecRecord

__all__ = ["Phase", "SpecRecord", "SpecSyncConfig", "__version__"]
