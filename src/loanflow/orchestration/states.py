"""
Workflow states and the ordered stage sequence.

A workflow is an ordered list of non-terminal stages plus a set of terminal
(dead-end) states. Any non-terminal stage can fall into a terminal state;
terminal states have no successor.

Examples:
    >>> stages = StageSequence(
    ...     ["DOCS_UPLOADED", "PENDING_REVIEW", "FRAUD_REVIEW"],
    ...     terminal_states=["REJECTED"],
    ... )
    >>> stages.successor("DOCS_UPLOADED").name
    'PENDING_REVIEW'
    >>> [s.name for s in stages.path("DOCS_UPLOADED", "FRAUD_REVIEW")]
    ['DOCS_UPLOADED', 'PENDING_REVIEW', 'FRAUD_REVIEW']
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from loanflow.core.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """A named point in the workflow. Names are case-sensitive."""

    name: str
    terminal: bool = False

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class TransitionRequest:
    """One attempted step: move ``entity_id`` from current to target."""

    current_state: str
    target_state: str
    entity_id: str
    store: str


class StageSequence:
    """Ordered non-terminal stages plus the terminal set.

    Raises:
        ConfigurationError: empty sequence, duplicate stage, blank name, or
            a terminal state listed among the ordered stages
    """

    def __init__(self, stages: Iterable[str], terminal_states: Iterable[str] = ()):
        names = list(stages)
        terminal = list(terminal_states)

        if not names:
            raise ConfigurationError("Stage sequence is empty")
        for name in names + terminal:
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"Invalid state name: {name!r}")

        seen: set[str] = set()
        for name in names:
            if name in seen:
                raise ConfigurationError(f"Duplicate stage in sequence: {name}")
            seen.add(name)

        overlap = seen.intersection(terminal)
        if overlap:
            raise ConfigurationError(
                f"Terminal state(s) listed as ordered stages: {', '.join(sorted(overlap))}"
            )

        self._stages = tuple(WorkflowState(n) for n in names)
        self._index = {s.name: i for i, s in enumerate(self._stages)}
        self._terminal = {n: WorkflowState(n, terminal=True) for n in terminal}

    @property
    def stages(self) -> tuple[WorkflowState, ...]:
        return self._stages

    @property
    def terminal_states(self) -> frozenset[str]:
        return frozenset(self._terminal)

    def __iter__(self) -> Iterator[WorkflowState]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, name: object) -> bool:
        return name in self._index or name in self._terminal

    def __repr__(self) -> str:
        return (
            f"StageSequence({[s.name for s in self._stages]!r}, "
            f"terminal_states={sorted(self._terminal)!r})"
        )

    def get(self, name: str) -> WorkflowState:
        """Resolve a state name. Unknown names raise ``ConfigurationError``."""
        if name in self._index:
            return self._stages[self._index[name]]
        if name in self._terminal:
            return self._terminal[name]
        raise ConfigurationError(f"Unknown state: {name}")

    def is_terminal(self, name: str) -> bool:
        return name in self._terminal

    def index(self, name: str) -> int:
        """Position of a non-terminal stage in the sequence."""
        try:
            return self._index[name]
        except KeyError:
            if name in self._terminal:
                raise ConfigurationError(f"Terminal state has no position: {name}") from None
            raise ConfigurationError(f"Unknown state: {name}") from None

    def successor(self, name: str) -> WorkflowState:
        """The stage immediately after ``name``.

        Raises:
            ConfigurationError: ``name`` is unknown, terminal, or the last stage
        """
        if name in self._terminal:
            raise ConfigurationError(f"Terminal state has no successor: {name}")
        i = self.index(name)
        if i + 1 >= len(self._stages):
            raise ConfigurationError(f"Last stage has no successor: {name}")
        return self._stages[i + 1]

    def path(self, start: str, target: str) -> list[WorkflowState]:
        """Stages from ``start`` to ``target`` inclusive.

        ``target`` must not come before ``start``.
        """
        i = self.index(start)
        j = self.index(target)
        if j < i:
            raise ConfigurationError(f"Target {target} comes before start {start}")
        return list(self._stages[i : j + 1])
