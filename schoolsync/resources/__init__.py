"""Cache-backed bindings for the school resources pages and commands use."""

from .collection import ResourceCollection, remove_record, replace_record
from .grades import GRADUATE, GradeProgression, grade_levels
from .links import ResourceLinkEditor
from .scope import LoggingNotifier, Notifier, Scope

__all__ = [
    "GRADUATE",
    "GradeProgression",
    "LoggingNotifier",
    "Notifier",
    "ResourceCollection",
    "ResourceLinkEditor",
    "Scope",
    "grade_levels",
    "remove_record",
    "replace_record",
]
