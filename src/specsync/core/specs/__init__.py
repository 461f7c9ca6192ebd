"""
Spec documents: models, Markdown files, section diffing and phase rules.

Phases, in order:
- requirements
- design
- tasks
- implementation
- completed

Each spec is ``<spec_dir>/<spec_id>.md`` with a metadata block whose
``**Phase:**`` and ``**Updated:**`` lines are kept in step with the
database record.
"""

from specsync.core.specs.changelog import diff_sections, parse_sections, summarize_diff
from specsync.core.specs.markdown import (
    SpecDocument,
    format_timestamp,
    parse_file,
    render_template,
    replace_metadata,
    spec_path,
    write_durable,
)
from specsync.core.specs.models import (
    ChangelogEntry,
    ChangeType,
    EntityType,
    MappingStatus,
    Phase,
    SpecRecord,
    SyncMapping,
    TaskItem,
)
from specsync.core.specs.validators import ValidationResult, validate_transition

__all__ = [
    "ChangeType",
    "ChangelogEntry",
    "EntityType",
    "MappingStatus",
    "Phase",
    "SpecDocument",
    "SpecRecord",
    "SyncMapping",
    "TaskItem",
    "ValidationResult",
    "diff_sections",
    "format_timestamp",
    "parse_file",
    "parse_sections",
    "render_template",
    "replace_metadata",
    "spec_path",
    "summarize_diff",
    "validate_transition",
    "write_durable",
]
