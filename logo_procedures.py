from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from logo_lexer import LogoError
from logo_parser import Leaf, Node, ProcedureDef, Repeat, SourceLocation


class LogoRuntimeError(LogoError):
    """Reported for per-command faults; execution carries on with the next command."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


class UnknownOperatorError(LogoRuntimeError):
    pass


class ArityMismatchError(LogoRuntimeError):
    pass


class InvalidArgumentError(LogoRuntimeError):
    pass


@dataclass
class Procedure:
    name: str
    params: List[str]
    body: List[Node]


@dataclass
class ProcedureRegistry:
    _procedures: Dict[str, Procedure] = field(default_factory=dict)

    @staticmethod
    def normalize(name: str) -> str:
        return name.lower()

    def define(self, name: str, params: Sequence[str], body: List[Node]) -> Procedure:
        key = self.normalize(name)
        procedure = Procedure(name=key, params=list(params), body=body)
        self._procedures[key] = procedure
        return procedure

    def define_from(self, node: ProcedureDef) -> Procedure:
        return self.define(node.name, node.params, node.body)

    def has(self, name: str) -> bool:
        return self.normalize(name) in self._procedures

    def get(self, name: str, *, location: Optional[SourceLocation] = None) -> Procedure:
        try:
            return self._procedures[self.normalize(name)]
        except KeyError:
            raise UnknownOperatorError(f"{name} is not defined.", location=location, rule=name)

    def get_optional(self, name: str) -> Optional[Procedure]:
        return self._procedures.get(self.normalize(name))

    def names(self) -> set[str]:
        return set(self._procedures.keys())

    def __len__(self) -> int:
        return len(self._procedures)


def check_arity(procedure: Procedure, args: Sequence[Any], *, location: Optional[SourceLocation] = None) -> None:
    # An empty argument list is accepted for any procedure and runs the raw body.
    if args and len(args) != len(procedure.params):
        raise ArityMismatchError(
            f"Error: {procedure.name} expects {len(procedure.params)} arguments but received {len(args)}.",
            location=location,
            rule=procedure.name,
        )


def bind_arguments(
    procedure: Procedure,
    args: Sequence[Any],
    *,
    location: Optional[SourceLocation] = None,
) -> List[Node]:
    """Return the procedure body with parameter tokens replaced by ``args``.

    The stored body is never modified; a fresh tree is built for every call.
    With no arguments the stored body itself is returned.
    """
    if not args:
        return procedure.body
    check_arity(procedure, args, location=location)
    bindings = {param: str(value) for param, value in zip(procedure.params, args)}
    return [_substitute(node, bindings) for node in procedure.body]


def _substitute(node: Node, bindings: Dict[str, str]) -> Node:
    if isinstance(node, Leaf):
        return Leaf(
            op=bindings.get(node.op, node.op),
            args=[bindings.get(arg, arg) for arg in node.args],
            location=node.location,
        )
    if isinstance(node, Repeat):
        return Repeat(
            count=node.count,
            body=[_substitute(child, bindings) for child in node.body],
            location=node.location,
        )
    if isinstance(node, ProcedureDef):
        return ProcedureDef(
            name=node.name,
            params=list(node.params),
            body=[_substitute(child, bindings) for child in node.body],
            location=node.location,
        )
    return node
