# xdex_indexer/parser_swap.py
# Swap parser: derive per-tx swap legs from pre/post token balances.
# Amounts stay in integer base units end to end; no floats on this path.

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .xdex_config import XDEX_PROGRAM_ID

@dataclass(frozen=True)
class TokenDelta:
    account_index: int
    mint: Optional[str]
    owner: Optional[str]
    program_id: Optional[str]
    decimals: Optional[int]
    delta: int  # signed base units

    def to_dict(self) -> dict:
        return {
            "account_index": self.account_index,
            "mint": self.mint,
            "owner": self.owner,
            "program_id": self.program_id,
            "decimals": self.decimals,
            "delta": str(self.delta),
        }

@dataclass(frozen=True)
class SwapLegs:
    spent: Optional[TokenDelta] = None     # negative delta
    received: Optional[TokenDelta] = None  # positive delta

@dataclass(frozen=True)
class ParsedSwap:
    signature: Optional[str]
    slot: Optional[int]
    block_time: Optional[int]
    success: bool
    token_in_mint: Optional[str]
    amount_in: Optional[str]
    token_out_mint: Optional[str]
    amount_out: Optional[str]
    # left for later enrichment
    pool_address: Optional[str] = None
    price: Optional[str] = None
    user_wallet: Optional[str] = None
    deltas: Tuple[TokenDelta, ...] = field(default=(), repr=False)

def _str(v) -> Optional[str]:
    return v if isinstance(v, str) else None

def _int(v) -> Optional[int]:
    return v if isinstance(v, int) and not isinstance(v, bool) else None

def _ui_amount(b) -> dict:
    ui = b.get('uiTokenAmount') if isinstance(b, dict) else None
    return ui if isinstance(ui, dict) else {}

def _raw_amount(b) -> int:
    """Base-unit amount of one balance entry. The RPC sends it as a decimal string;
    any other shape counts as zero."""
    amt = _ui_amount(b).get('amount')
    if not isinstance(amt, str):
        return 0
    try:
        return int(amt.strip())
    except ValueError:
        return 0

def _decimals(b) -> Optional[int]:
    dec = _ui_amount(b).get('decimals')
    return _int(dec)

def _balances_by_index(tb) -> Dict[int, dict]:
    out = {}
    if not isinstance(tb, list):
        return out
    for b in tb:
        if not isinstance(b, dict):
            continue
        idx = b.get('accountIndex')
        if _int(idx) is None:
            continue
        out[idx] = b
    return out

def _meta(txj) -> dict:
    meta = txj.get('meta') if isinstance(txj, dict) else None
    return meta if isinstance(meta, dict) else {}

def extract_token_deltas(txj) -> List[TokenDelta]:
    """Signed per-account token deltas for one transaction; zero deltas dropped."""
    meta = _meta(txj)
    pre  = _balances_by_index(meta.get('preTokenBalances'))
    post = _balances_by_index(meta.get('postTokenBalances'))

    deltas = []
    for idx, post_b in post.items():
        pre_b = pre.get(idx)
        delta = _raw_amount(post_b) - _raw_amount(pre_b)
        if delta == 0:
            continue
        dec = _decimals(post_b)
        if dec is None:
            dec = _decimals(pre_b)
        deltas.append(TokenDelta(
            account_index=idx,
            mint=_str(post_b.get('mint')),
            owner=_str(post_b.get('owner')),
            program_id=_str(post_b.get('programId')),
            decimals=dec,
            delta=delta,
        ))

    # token accounts closed inside the tx
    for idx, pre_b in pre.items():
        if idx in post:
            continue
        amt = _raw_amount(pre_b)
        if amt == 0:
            continue
        deltas.append(TokenDelta(
            account_index=idx,
            mint=_str(pre_b.get('mint')),
            owner=_str(pre_b.get('owner')),
            program_id=_str(pre_b.get('programId')),
            decimals=_decimals(pre_b),
            delta=-amt,
        ))
    return deltas

def pick_swap_legs(deltas) -> SwapLegs:
    # one stable sort by |delta| desc, then first negative / first positive
    if not deltas:
        return SwapLegs()
    items = sorted(deltas, key=lambda d: abs(d.delta), reverse=True)
    spent    = next((d for d in items if d.delta < 0), None)
    received = next((d for d in items if d.delta > 0), None)
    return SwapLegs(spent=spent, received=received)

def is_xdex_swap(txj, program_id: str = XDEX_PROGRAM_ID) -> bool:
    logs = _meta(txj).get('logMessages')
    if not isinstance(logs, list):
        return False
    marker = f"Program {program_id} invoke"
    return any(isinstance(l, str) and l.startswith(marker) for l in logs)

def _first_signature(txj) -> Optional[str]:
    tx = txj.get('transaction') if isinstance(txj, dict) else None
    sigs = tx.get('signatures') if isinstance(tx, dict) else None
    if isinstance(sigs, list) and sigs:
        return _str(sigs[0])
    return None

def parse_xdex_swap(txj, slot: Optional[int] = None, block_time: Optional[int] = None,
                    program_id: str = XDEX_PROGRAM_ID) -> Optional[ParsedSwap]:
    """
    Build a ParsedSwap for an XDEX transaction, or None when the logs show no
    XDEX invocation. Amounts are signed strings (spent side negative); callers
    normalise them to magnitudes before validation.
    """
    if not is_xdex_swap(txj, program_id):
        return None

    deltas = extract_token_deltas(txj)
    legs = pick_swap_legs(deltas)
    meta = _meta(txj)

    tx_slot = _int(txj.get('slot'))
    tx_time = _int(txj.get('blockTime'))
    return ParsedSwap(
        signature=_first_signature(txj),
        slot=tx_slot if tx_slot is not None else slot,
        block_time=tx_time if tx_time is not None else _int(block_time),
        success=meta.get('err') is None,
        token_in_mint=legs.spent.mint if legs.spent else None,
        amount_in=str(legs.spent.delta) if legs.spent else None,
        token_out_mint=legs.received.mint if legs.received else None,
        amount_out=str(legs.received.delta) if legs.received else None,
        deltas=tuple(deltas),
    )

def _magnitude(amount: Optional[str]) -> Optional[str]:
    if amount is None:
        return None
    try:
        return str(abs(int(amount)))
    except ValueError:
        return None

def normalize_swap(swap: ParsedSwap) -> ParsedSwap:
    return replace(swap,
                   amount_in=_magnitude(swap.amount_in),
                   amount_out=_magnitude(swap.amount_out))
