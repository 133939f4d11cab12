# xdex_indexer/validator.py
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .parser_swap import ParsedSwap

log = logging.getLogger(__name__)

@dataclass
class ValidationResult:
    valid: List[ParsedSwap] = field(default_factory=list)
    rejected: int = 0

def _nonzero(amount: Optional[str]) -> bool:
    if not amount:
        return False
    try:
        return int(amount) != 0
    except ValueError:
        return False

def reject_reason(s: ParsedSwap) -> Optional[str]:
    if s.token_in_mint == s.token_out_mint:
        return "same token"
    if not s.token_in_mint or not s.token_out_mint:
        return "missing token"
    if not _nonzero(s.amount_in) or not _nonzero(s.amount_out):
        return "missing amounts"
    return None

def validate_swaps(swaps: Iterable[ParsedSwap]) -> ValidationResult:
    res = ValidationResult()
    for s in swaps:
        reason = reject_reason(s)
        if reason:
            res.rejected += 1
            log.warning("Invalid swap (%s): %s...", reason, (s.signature or "?")[:8])
            continue
        res.valid.append(s)
    if res.rejected:
        log.info("Filtered %d invalid swaps", res.rejected)
    return res
