from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from slotbot.domain import ConfigError, Token

SolveFn = Callable[[], Awaitable[Token]]


class ChallengeSolver(Protocol):
    """Opaque solving capability supplied by the operator.

    Both methods raise ``SolverError`` on timeout or provider rejection.
    """

    async def solve_type_a(self, target_url: str, site_key: str) -> Token: ...

    async def solve_type_b(self, target_url: str, site_key: str, min_score: float, action: str) -> Token: ...


@dataclass(frozen=True)
class ChallengeTarget:
    target_url: str
    site_key_a: str
    site_key_b: str
    min_score_b: float = 0.9
    action_b: str = "appointment_submit"


def bind_type_a(solver: ChallengeSolver, target: ChallengeTarget) -> SolveFn:
    async def solve() -> Token:
        return await solver.solve_type_a(target.target_url, target.site_key_a)

    return solve


def bind_type_b(solver: ChallengeSolver, target: ChallengeTarget) -> SolveFn:
    async def solve() -> Token:
        return await solver.solve_type_b(
            target.target_url,
            target.site_key_b,
            target.min_score_b,
            target.action_b,
        )

    return solve


def load_solver_factory(spec: str) -> Callable[[Any], ChallengeSolver]:
    # SOLVER_FACTORY=my_solvers.provider:build_solver
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Invalid SOLVER_FACTORY value: {spec!r}. Expected 'module:callable'.")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import solver module {module_name!r}: {e}") from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"SOLVER_FACTORY {spec!r} does not point to a callable")
    return factory
