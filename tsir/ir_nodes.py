# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Typestate IR node definitions.

A function body is a label table: label -> (declared NodeType, Node). Every
node kind is a frozen dataclass; the set is closed and the CFG verifier
dispatches over it exhaustively. Successors are referenced by label, never by
pointer, so loops are just labels that refer back to earlier ones.

`entry` is defined like any other label; `exit` is never defined, only
referenced, and its NodeType is synthesized from the function signature.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Tuple

from tsir.context_store import ContextStore, FnSignature
from tsir.core.span import Span
from tsir.core.types_core import Lifetime, Type
from tsir.location_ctx import RETURN_SLOT, Location, LocationContext, equals_required, local, param
from tsir.obligations import (
	BoundContext,
	LifetimeContext,
	entails,
	format_bounds,
	format_lifetimes,
)

ENTRY = "entry"
EXIT = "exit"


@dataclass(frozen=True)
class NodeType:
	"""Typing required of whoever transfers control to a label."""

	locations: LocationContext
	lifetimes: LifetimeContext = frozenset()
	bounds: BoundContext = frozenset()

	def __str__(self) -> str:
		return f"{self.locations} | {format_lifetimes(self.lifetimes)} | {format_bounds(self.bounds)}"


def is_node_subtype(sub: NodeType, sup: NodeType, store: ContextStore) -> bool:
	"""
	`sub <: sup`: locations by depth subtyping, identical lifetime sets, and
	`sub`'s obligations entailing `sup`'s (requiring fewer facts is more
	permissive).
	"""
	if sub.lifetimes != sup.lifetimes:
		return False
	if not entails(sub.bounds, sup.bounds):
		return False
	return equals_required(sub.locations, sup.locations, store)


# --- operands and rvalues ---------------------------------------------------


class Operand:
	pass


@dataclass(frozen=True)
class Use(Operand):
	"""Read a location by value (moved unless its type is Copy)."""

	loc: Location

	def __str__(self) -> str:
		return str(self.loc)


@dataclass(frozen=True)
class Const(Operand):
	"""A typed constant; the value itself is irrelevant to typing."""

	type: Type
	value: object = None

	def __str__(self) -> str:
		return f"const<{self.type}>" if self.value is None else f"const<{self.type}> {self.value!r}"


@dataclass(frozen=True)
class UnaryOp:
	op: str
	operand: Operand

	def __str__(self) -> str:
		return f"{self.op} {self.operand}"


@dataclass(frozen=True)
class BinaryOp:
	op: str
	left: Operand
	right: Operand

	def __str__(self) -> str:
		return f"{self.left} {self.op} {self.right}"


RValue = Operand | UnaryOp | BinaryOp


# --- nodes --------------------------------------------------------------------


class Node:
	"""Base of the closed node-kind set."""

	def successors(self) -> Tuple[str, ...]:
		raise NotImplementedError


@dataclass(frozen=True)
class Assign(Node):
	dest: Location
	value: RValue
	target: str
	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return (self.target,)


@dataclass(frozen=True)
class Call(Node):
	dest: Location
	callee: str
	args: Tuple[Operand, ...]
	target: str
	type_args: Tuple[Type, ...] = ()
	lifetime_args: Tuple[Lifetime, ...] = ()
	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return (self.target,)


@dataclass(frozen=True)
class If(Node):
	cond: Operand
	then_target: str
	else_target: str
	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return (self.then_target, self.else_target)


@dataclass(frozen=True)
class SwitchArm:
	type: Type
	target: str


@dataclass(frozen=True)
class Switch(Node):
	subject: Location
	static_type: Type
	arms: Tuple[SwitchArm, ...]
	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return tuple(arm.target for arm in self.arms)


@dataclass(frozen=True)
class Drop(Node):
	loc: Location
	target: str
	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return (self.target,)


@dataclass(frozen=True)
class LifetimeBegin(Node):
	lifetime: Lifetime
	target: str
	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return (self.target,)


@dataclass(frozen=True)
class LifetimeEnd(Node):
	lifetime: Lifetime
	target: str
	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return (self.target,)


@dataclass(frozen=True)
class DeadCode(Node):
	"""Unreachable point: only valid where some location is absurd."""

	span: Span = field(default_factory=Span, compare=False)

	def successors(self) -> Tuple[str, ...]:
		return ()


@dataclass(frozen=True)
class LabeledNode:
	node_type: NodeType
	node: Node


@dataclass
class Function:
	"""A function body: signature, local names and the label table."""

	signature: FnSignature
	locals: Tuple[str, ...] = ()
	labels: Dict[str, LabeledNode] = field(default_factory=dict)
	span: Span = field(default_factory=Span)

	@property
	def name(self) -> str:
		return self.signature.name

	def locations(self) -> Tuple[Location, ...]:
		"""Every function-scoped location: return slot, parameters, locals."""
		return (
			RETURN_SLOT,
			*(param(name) for name, _ty in self.signature.params),
			*(local(name) for name in self.locals),
		)

	def label_items(self) -> Iterator[Tuple[str, LabeledNode]]:
		return iter(self.labels.items())


@dataclass
class Program:
	"""A context store plus the functions verified against it."""

	store: ContextStore
	functions: Dict[str, Function] = field(default_factory=dict)


__all__ = [
	"ENTRY",
	"EXIT",
	"NodeType",
	"is_node_subtype",
	"Operand",
	"Use",
	"Const",
	"UnaryOp",
	"BinaryOp",
	"RValue",
	"Node",
	"Assign",
	"Call",
	"If",
	"SwitchArm",
	"Switch",
	"Drop",
	"LifetimeBegin",
	"LifetimeEnd",
	"DeadCode",
	"LabeledNode",
	"Function",
	"Program",
]
