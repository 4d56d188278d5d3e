"""Value types returned by the PolkaPay services.

Chain client payloads are untyped; the records below pin down which fields
may be absent so callers never have to dig through raw dictionaries. All of them
are plain values created fresh per call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Mapping


class AccountStatus(Enum):
    """Asset account state as stored by the assets pallet."""

    LIQUID = "Liquid"
    FROZEN = "Frozen"
    BLOCKED = "Blocked"

    @classmethod
    def parse(cls, raw: Any) -> "AccountStatus | None":
        tag = enum_tag(raw)
        if tag is None:
            return None
        for member in cls:
            if member.value.lower() == tag.lower():
                return member
        return None


class TransactionState(Enum):
    """Lifecycle of a transfer from construction to a terminal outcome."""

    BUILT = auto()
    FEE_ESTIMATED = auto()
    SIGNED = auto()
    SUBMITTED = auto()
    FINALIZED = auto()
    REJECTED = auto()


@dataclass(frozen=True)
class FinalizedBlock:
    number: int
    hash: str


@dataclass(frozen=True)
class BlockInfo:
    """Location of an extrinsic inside a block."""

    number: int
    hash: str
    index: int

    @classmethod
    def from_raw(cls, raw: Any) -> "BlockInfo | None":
        """Parse a block location; partial payloads yield ``None``."""

        if raw is None:
            return None
        number = field_value(raw, "number")
        block_hash = field_value(raw, "hash")
        if number is None or block_hash is None:
            return None
        return cls(
            number=int(number),
            hash=str(block_hash),
            index=int(field_value(raw, "index", 0) or 0),
        )


@dataclass(frozen=True)
class AccountSnapshot:
    """Result of reading one asset account."""

    exists: bool
    address: str
    balance: int
    formatted_balance: str
    status: AccountStatus | None = None
    reason: str | None = None


@dataclass(frozen=True)
class TransferIntent:
    """Unsigned ``Assets.transfer`` call ready for pricing or signing."""

    asset_id: int
    destination: str
    target: Mapping[str, Any]
    amount: int
    call: Any = field(repr=False, compare=False)


@dataclass(frozen=True)
class SignedTransaction:
    """Chain-submittable encoding of a signed intent."""

    extrinsic: str
    tx_hash: str | None = None


@dataclass(frozen=True)
class TransactionResult:
    """Terminal record of a submission."""

    tx_hash: str
    ok: bool
    status: str
    block: BlockInfo | None = None
    dispatch_error: Any = None

    @property
    def state(self) -> TransactionState:
        return TransactionState.FINALIZED if self.ok else TransactionState.REJECTED


_EVENT_TYPE_ALIASES = {
    "signed": "signed",
    "broadcasted": "broadcasted",
    "broadcast": "broadcasted",
    "ready": "broadcasted",
    "txbestblocksstate": "in_block",
    "inblock": "in_block",
    "in_block": "in_block",
    "finalized": "finalized",
    "invalid": "invalid",
    "dropped": "dropped",
    "error": "error",
}
TERMINAL_EVENT_TYPES = frozenset({"finalized", "invalid", "dropped", "error"})


@dataclass(frozen=True)
class TransactionEvent:
    """One step of a watched submission."""

    type: str
    tx_hash: str | None = None
    ok: bool | None = None
    block: BlockInfo | None = None
    dispatch_error: Any = None
    raw: Any = field(default=None, repr=False, compare=False)

    @classmethod
    def from_raw(cls, raw: Any) -> "TransactionEvent":
        raw_type = str(field_value(raw, "type", "unknown"))
        event_type = _EVENT_TYPE_ALIASES.get(raw_type.replace("-", "").lower(), raw_type)
        if event_type == "in_block" and field_value(raw, "found", True) is False:
            event_type = "broadcasted"
        ok = field_value(raw, "ok")
        return cls(
            type=event_type,
            tx_hash=field_value(raw, "txHash", None) or field_value(raw, "tx_hash", None),
            ok=bool(ok) if ok is not None else None,
            block=BlockInfo.from_raw(field_value(raw, "block", None)),
            dispatch_error=field_value(raw, "dispatchError", None) or field_value(raw, "dispatch_error", None),
            raw=raw,
        )

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_result(self) -> TransactionResult:
        """Convert a terminal event into the record ``submit`` would return."""

        if not self.is_terminal:
            raise ValueError(f"Event {self.type!r} is not terminal")
        ok = bool(self.ok) and self.type == "finalized"
        return TransactionResult(
            tx_hash=self.tx_hash or "",
            ok=ok,
            status="Success" if ok else "Failed",
            block=self.block,
            dispatch_error=self.dispatch_error,
        )


def field_value(raw: Any, name: str, default: Any = None) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name, default)
    return getattr(raw, name, default)


def enum_tag(raw: Any) -> str | None:
    """Return the variant name of a SCALE enum as decoded by chain clients.

    Clients render enums as plain strings (``"Liquid"``), tagged mappings
    (``{"type": "Liquid"}``) or single-key mappings (``{"DepositHeld": 10}``).
    """

    if raw is None:
        return None
    if isinstance(raw, str):
        return raw
    if isinstance(raw, Mapping):
        if "type" in raw:
            return str(raw["type"])
        if len(raw) == 1:
            return str(next(iter(raw)))
        return None
    tag = getattr(raw, "type", None)
    return str(tag) if tag is not None else None
