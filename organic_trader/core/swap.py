"""
Swap request types shared between the trader and the instruction builder

The instruction builder itself (pool account resolution, swap instruction
encoding) lives outside this package. It is any object exposing:

    async def build_swap(request: SwapRequest) -> SwapQuote

and raising SwapBuildError when the swap cannot be prepared.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from solders.instruction import Instruction
from solders.keypair import Keypair


class SwapDirection(Enum):
    BUY = "buy"
    SELL = "sell"


class SwapInType(Enum):
    """How amount_in is interpreted"""
    QTY = "qty"  # absolute SOL quantity
    PCT = "pct"  # fraction of current token holdings (0.0-1.0)


@dataclass
class SwapRequest:
    """A single trade attempt handed to the instruction builder"""
    mint: str
    direction: SwapDirection
    in_type: SwapInType
    amount_in: float
    slippage_bps: int = 1000
    max_buy_amount: float = 0.0
    owner: Optional[Keypair] = None  # wallet chosen by the pool, if any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint": self.mint,
            "direction": self.direction.value,
            "in_type": self.in_type.value,
            "amount_in": self.amount_in,
            "slippage_bps": self.slippage_bps,
            "max_buy_amount": self.max_buy_amount,
            "owner": str(self.owner.pubkey()) if self.owner else None
        }


@dataclass
class SwapQuote:
    """Instructions ready to sign plus the pool price observed while building them"""
    keypair: Keypair
    instructions: List[Instruction]
    price: float


class SwapBuildError(Exception):
    """Instruction builder could not prepare the swap"""
