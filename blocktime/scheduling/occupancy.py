from typing import Dict, Iterable, Set, Tuple

ROOM = 'room'
TEACHER = 'teacher'
SECTION = 'section'

# (resource_id, *time key); time key is (day_index, slot_id) for blocks and
# (date ordinal, start minute) for exams
Key = Tuple[int, int, int]


class Occupancy:
    """Which rooms, teachers and sections are taken at which time key.

    Owned by a single allocation run.
    """

    def __init__(self):
        self._used: Dict[str, Set[Key]] = {ROOM: set(), TEACHER: set(), SECTION: set()}

    def is_free(self, kind: str, resource_id: int, when: Tuple[int, int]) -> bool:
        return (resource_id, *when) not in self._used[kind]

    def take(self, claims: Iterable[Tuple[str, int]], when: Tuple[int, int]):
        for kind, resource_id in claims:
            self._used[kind].add((resource_id, *when))

    def release(self, claims: Iterable[Tuple[str, int]], when: Tuple[int, int]):
        for kind, resource_id in claims:
            self._used[kind].discard((resource_id, *when))
