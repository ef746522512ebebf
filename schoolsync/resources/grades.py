"""Grade levels and the grade-to-grade progression used at year rollover."""

from __future__ import annotations

from ..cache import ACADEMICS, CacheConfig, SynchronizedCache
from ..client import ErrorKind, ResourceClient, ResourceEnvelope
from ..logutils import get_logger
from .collection import ResourceCollection
from .scope import Notifier, Scope

logger = get_logger(__name__)

GRADES_RESOURCE = "academics/grades"
GRADUATE = "GRADUATE"
MAX_CHAIN_LENGTH = 20


def grade_levels(
    cache: SynchronizedCache,
    client: ResourceClient,
    scope: Scope,
    notifier: Notifier | None = None,
    config: CacheConfig = ACADEMICS,
) -> ResourceCollection:
    return ResourceCollection(cache, client, GRADES_RESOURCE, scope, config=config, notifier=notifier, label="Grade level")


class GradeProgression:
    """Which grade students move into when the academic year rolls over.

    Each grade's ``next_grade_id`` names the grade that follows it; ``None``
    means students graduate from it.
    """

    def __init__(self, grades: ResourceCollection) -> None:
        self.grades = grades

    @property
    def notifier(self) -> Notifier:
        return self.grades.notifier

    def ordered(self) -> list[dict]:
        return sorted(self.grades.items, key=lambda g: g.get("order_index", 0))

    def available_next_grades(self, grade: dict) -> list[dict]:
        """Active grades ordered after ``grade``."""
        return [
            g for g in self.ordered() if g.get("order_index", 0) > grade.get("order_index", 0) and g.get("is_active")
        ]

    async def set_next_grade(self, grade_id: str, next_grade_id: str | None) -> ResourceEnvelope[dict]:
        """Point a grade at its successor, optimistically.

        ``"GRADUATE"``, ``None`` or an empty string mark the grade as the
        last one. The target is checked against the cached grades before
        anything is applied.
        """
        target = None if next_grade_id in (None, "", GRADUATE) else next_grade_id

        grade = self.grades.find(grade_id)
        if grade is None:
            return self._reject(f"Grade {grade_id} not found")
        if target is not None:
            candidate = self.grades.find(target)
            if candidate is None:
                return self._reject(f"Next grade {target} not found")
            if candidate not in self.available_next_grades(grade):
                return self._reject(
                    f"{candidate.get('name', target)} cannot follow {grade.get('name', grade_id)}: "
                    "the next grade must be active and come later in the order"
                )

        return await self.grades.update(
            grade_id,
            {"next_grade_id": target},
            optimistic=True,
            success_message="Grade progression updated",
        )

    async def save_all(self) -> int:
        """Re-send every grade's ``next_grade_id``.

        Returns:
            Number of grades saved successfully
        """
        grades = self.ordered()
        saved = 0
        for grade in grades:
            envelope = await self.grades.client.update(
                self.grades.resource, grade["id"], {"next_grade_id": grade.get("next_grade_id")}
            )
            if envelope.success:
                saved += 1
            else:
                logger.warning("Saving progression for %s failed: %s", grade.get("name"), envelope.error)

        if saved == len(grades):
            self.notifier.success("All grade progressions saved")
        else:
            self.notifier.warning(f"{saved} of {len(grades)} grades updated")
        self.grades.cache.invalidate(self.grades.key)
        return saved

    def progression_chain(self) -> list[str]:
        """Grade names from the lowest grade following ``next_grade_id``.

        Ends with ``"GRADUATE"`` when the chain reaches a final grade; stops
        silently at a cycle, a dangling reference or after 20 grades.
        """
        grades = self.ordered()
        if not grades:
            return []
        by_id = {g["id"]: g for g in grades}
        chain: list[str] = []
        visited: set[str] = set()
        current: dict | None = grades[0]
        while current is not None and len(chain) < MAX_CHAIN_LENGTH:
            if current["id"] in visited:
                break
            visited.add(current["id"])
            chain.append(current.get("name", current["id"]))
            if not current.get("next_grade_id"):
                chain.append(GRADUATE)
                break
            current = by_id.get(current["next_grade_id"])
        return chain

    def _reject(self, message: str) -> ResourceEnvelope:
        self.notifier.error(message)
        return ResourceEnvelope.fail(ErrorKind.VALIDATION, message)
