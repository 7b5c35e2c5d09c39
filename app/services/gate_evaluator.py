from __future__ import annotations

from dataclasses import dataclass, field

from app.schemas.loan import GateFlag, LoanStatus


@dataclass(frozen=True)
class GateRequirement:
    flag: GateFlag
    reason: str


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    gate: str | None = None
    reason: str | None = None
    missing: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def allow(cls) -> GateDecision:
        return cls(allowed=True)

    @classmethod
    def blocked(cls, unmet: list[GateRequirement]) -> GateDecision:
        first = unmet[0]
        return cls(
            allowed=False,
            gate=first.flag.value,
            reason=first.reason,
            missing=tuple(requirement.flag.value for requirement in unmet),
        )


# Target status -> flags that must already be set on the loan.
GATE_RULES: dict[LoanStatus, tuple[GateRequirement, ...]] = {
    LoanStatus.APPRAISAL_ORDERED: (
        GateRequirement(GateFlag.PAYMENT_CAPTURED, "Underwriting fee not yet captured"),
    ),
    LoanStatus.CONDITIONALLY_APPROVED: (
        GateRequirement(GateFlag.CLOSING_FEE_CAPTURED, "Closing fee not yet captured"),
    ),
    LoanStatus.CLEAR_TO_CLOSE: (
        GateRequirement(GateFlag.CONDITIONS_CLEARED, "Conditional items not yet cleared"),
    ),
}


def requirements_for(
    to_status: LoanStatus | str,
    rules: dict[LoanStatus, tuple[GateRequirement, ...]] | None = None,
) -> tuple[GateRequirement, ...]:
    try:
        target = LoanStatus(to_status)
    except ValueError:
        return ()
    return (GATE_RULES if rules is None else rules).get(target, ())


def evaluate(loan, to_status: LoanStatus | str, rules=None) -> GateDecision:
    """Decide whether ``loan`` currently satisfies the gates guarding ``to_status``.

    ``loan`` only needs the gate flag attributes. Structural legality is not checked here.
    """
    requirements = requirements_for(to_status, rules)
    unmet = [req for req in requirements if not bool(getattr(loan, req.flag.value, False))]
    if unmet:
        return GateDecision.blocked(unmet)
    return GateDecision.allow()
