"""Per-query session state shared by the orchestrator and recognition jobs.

A SessionState is created when a query arrives and replaced wholesale by the
next one. All mutation happens through the methods below, which never await,
so each check-and-set is atomic on the event loop.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from services.matching.validator import normalize_text

logger = logging.getLogger(__name__)


def object_identity(bbox: Sequence[float], grid: int = 32) -> int:
    """Deterministic id for "the same physical object" across frames.

    The bbox centre and size are bucketed into a coarse grid; boxes that fall
    in the same cells share an identity.
    """
    x, y, w, h = bbox
    cx = int((x + w / 2.0) // grid)
    cy = int((y + h / 2.0) // grid)
    gw = int(w // grid)
    gh = int(h // grid)
    # Pack four small non-negative ints; 16 bits each is plenty for a frame
    return ((cx & 0xFFFF) << 48) | ((cy & 0xFFFF) << 32) | ((gw & 0xFFFF) << 16) | (gh & 0xFFFF)


@dataclass(frozen=True)
class MatchTarget:
    """Targets the user is looking for plus the whitelist used for validation."""

    targets: FrozenSet[str]
    whitelist: Tuple[str, ...]

    @classmethod
    def create(cls, targets: Iterable[str], whitelist: Iterable[str] = ()) -> "MatchTarget":
        norm_targets = [t for t in (normalize_text(t) for t in targets) if t]
        entries: List[str] = []
        for item in list(whitelist) + norm_targets:
            norm = normalize_text(item)
            if norm and norm not in entries:
                entries.append(norm)
        return cls(targets=frozenset(norm_targets), whitelist=tuple(entries))

    def is_target(self, identifier: str) -> bool:
        return normalize_text(identifier) in self.targets


@dataclass
class SessionState:
    """State for the current query."""

    target: MatchTarget
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: float = field(default_factory=time.time)

    cooldowns: Dict[int, float] = field(default_factory=dict)
    processing: Set[int] = field(default_factory=set)
    announced: Set[str] = field(default_factory=set)
    match_found: bool = False
    matched_identifier: Optional[str] = None
    active: bool = True

    @property
    def whitelist(self) -> Tuple[str, ...]:
        return self.target.whitelist

    def is_target(self, identifier: str) -> bool:
        return self.target.is_target(identifier)

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    def should_process(self, identity: int, cooldown_s: float, now: Optional[float] = None) -> bool:
        """True if the object is neither in flight nor inside its cooldown."""
        if not self.active or self.match_found:
            return False
        if identity in self.processing:
            return False
        now = time.time() if now is None else now
        last = self.cooldowns.get(identity)
        return last is None or now - last >= cooldown_s

    def mark_processing(self, identity: int) -> None:
        self.processing.add(identity)

    def mark_processed(self, identity: int, now: Optional[float] = None) -> None:
        self.processing.discard(identity)
        self.cooldowns[identity] = time.time() if now is None else now

    # ------------------------------------------------------------------
    # Match claim
    # ------------------------------------------------------------------

    def claim_match(self, identifier: str) -> bool:
        """Atomically claim the session's single announcement.

        Returns:
            True for exactly one caller per session; False when the candidate
            is not a target, the session already matched, or the identifier
            was already announced.
        """
        norm = normalize_text(identifier)
        if not self.active or norm not in self.target.targets:
            return False
        if self.match_found or norm in self.announced:
            logger.info(f"Match {norm} already claimed, skipping announcement")
            return False
        self.match_found = True
        self.matched_identifier = norm
        self.announced.add(norm)
        return True

    def clear(self) -> None:
        """Tear down: drop all maps/sets and reset the match flag."""
        self.cooldowns.clear()
        self.processing.clear()
        self.announced.clear()
        self.match_found = False
        self.active = False
