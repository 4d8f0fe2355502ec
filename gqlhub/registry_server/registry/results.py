"""
Tagged results of registry checks.

Every registry check returns exactly one of:
- Completed(result): the check ran and passed
- Failed(reason): the check ran and found a problem
- Skipped: the check did not run (nothing to compare against)

Failed and Skipped are never interchangeable: Skipped means "nothing to
do", Failed means the operation may have to be rejected.

Example:
    >>> result = Completed("initial")
    >>> isinstance(result, Completed) and result.result == "initial"
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

C = TypeVar("C")
F = TypeVar("F")


@dataclass(frozen=True)
class Completed(Generic[C]):
    result: C

    status = "completed"


@dataclass(frozen=True)
class Failed(Generic[F]):
    reason: F

    status = "failed"


@dataclass(frozen=True)
class Skipped:
    status = "skipped"


SKIPPED = Skipped()

CheckResult = Union[Completed[C], Failed[F], Skipped]
