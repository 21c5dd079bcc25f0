"""
Graph: await a nodnod node with injected inputs.

    from cartflow import graph as G

    @G.node
    class FetchAttemptNode:
        @classmethod
        async def __compose__(cls, spec: FinalizeSpec) -> "FetchAttemptNode":
            ...

    node = await G.run(FinalResultNode).inject(spec)

One agent is built per target node class and kept for the process.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, cast

from nodnod import EventLoopAgent, Node, Scope, Value
from nodnod import scalar_node as node

_AGENTS: dict[type[Any], EventLoopAgent] = {}


def _agent_for(target: type[Any]) -> EventLoopAgent:
    agent = _AGENTS.get(target)
    if agent is None:
        # Dependencies are discovered from the target's __compose__ hints
        agent = EventLoopAgent.build({cast(type[Node[Any, Any]], target)})
        _AGENTS[target] = agent
    return agent


@dataclass(frozen=True, slots=True)
class Run[T]:
    """Pending run of one node. Awaiting it resolves the node."""

    target: type[T]
    inputs: tuple[object, ...] = ()

    def inject(self, value: object) -> Run[T]:
        """Add an input, keyed by its runtime type."""
        return Run(self.target, (*self.inputs, value))

    def __await__(self) -> Any:
        return self._resolve().__await__()

    async def _resolve(self) -> T:
        agent = _agent_for(self.target)
        scope = Scope(detail=f"run {self.target.__name__}")
        async with scope:
            for value in self.inputs:
                scope.push(Value(type(value), value))

            run_agent = cast(
                Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
                getattr(agent, "run"),
            )
            await run_agent(scope, {})

            resolved = scope.get(self.target)
            if resolved is None:
                raise LookupError(f"{self.target.__name__} was not resolved")
            return cast(T, resolved.value)


def run[T](target: type[T]) -> Run[T]:
    return Run(target)


__all__ = ("node", "Run", "run")
