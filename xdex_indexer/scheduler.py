# xdex_indexer/scheduler.py
from dataclasses import dataclass
from typing import Optional

MODE_TAIL = "tail"
MODE_CONTINUE = "continue"
MODES = (MODE_TAIL, MODE_CONTINUE)

BOOTSTRAP_LAG = 60  # first run starts this many slots behind head

@dataclass(frozen=True)
class SlotWindow:
    start: int
    end: int    # inclusive
    head: int

    @property
    def empty(self) -> bool:
        return self.start > self.head

    @property
    def size(self) -> int:
        return 0 if self.empty else self.end - self.start + 1

    @property
    def behind(self) -> int:
        return max(self.head - self.end, 0)

def resolve_window(head: int, cursor_slot: Optional[int], mode: str = MODE_CONTINUE,
                   budget: int = 200, bootstrap_lag: int = BOOTSTRAP_LAG) -> SlotWindow:
    """
    tail:     re-scan the last `budget` slots up to head, ignoring the cursor.
    continue: resume after the cursor, or start `bootstrap_lag` behind head
              when no cursor exists yet.
    """
    if mode not in MODES:
        raise ValueError(f"unknown mode: {mode!r} (expected tail|continue)")
    if budget < 1:
        raise ValueError(f"slot budget must be >= 1, got {budget}")

    if mode == MODE_TAIL:
        start = max(head - budget + 1, 0)
    elif cursor_slot is not None:
        start = cursor_slot + 1
    else:
        start = head - bootstrap_lag

    end = min(head, start + budget - 1)
    return SlotWindow(start=start, end=end, head=head)
