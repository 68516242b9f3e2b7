# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Location-context engine.

A LocationContext maps each mentioned location to exactly one type at one CFG
point. The engine implements the typestate moves on it:

  * consume - reading a location; Copy types stay, everything else leaves
    `uninit<size>` behind (a second read is UseAfterMove).
  * assign  - writing into a location that must currently be uninit of the
    value's size (anything else is DoubleInit).
  * drop    - explicitly forgetting a Copy value.

and the depth-only subtyping check used against successors: every location a
required context mentions must be present with a subtype of the required type.
Width subtyping is deliberately absent; whether a NodeType mentions every
location of its function is a well-formedness check done by the function
verifier.

Statics are not threaded through contexts: their types come from the store,
never change, and may only be read when Copy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from tsir.context_store import ContextStore
from tsir.core.diagnostics import ErrorKind, fail
from tsir.core.types_core import AbsurdType, Type, UninitType, uninit

_log = logging.getLogger(__name__)


class LocKind(Enum):
	"""Kinds of addressable slots."""

	RETURN = "ret"
	STATIC = "static"
	LOCAL = "local"
	PARAM = "param"


@dataclass(frozen=True)
class Location:
	"""An addressable slot; its type lives in a context, never on the slot."""

	kind: LocKind
	name: str

	def __str__(self) -> str:
		return self.name


RETURN_SLOT = Location(LocKind.RETURN, "ret")


def local(name: str) -> Location:
	return Location(LocKind.LOCAL, name)


def param(name: str) -> Location:
	return Location(LocKind.PARAM, name)


def static(name: str) -> Location:
	return Location(LocKind.STATIC, name)


class LocationContext:
	"""Immutable, single-valued mapping from locations to types."""

	__slots__ = ("_types",)

	def __init__(self, entries: Iterable[Tuple[Location, Type]] = ()) -> None:
		types: Dict[Location, Type] = {}
		for loc, ty in entries:
			if loc in types:
				raise fail(
					ErrorKind.MALFORMED_CONTEXT,
					f"location {loc} listed twice in one context",
					rule="context",
					locations=[loc],
				)
			types[loc] = ty
		self._types = types

	def get(self, loc: Location) -> Optional[Type]:
		return self._types.get(loc)

	def items(self) -> Iterator[Tuple[Location, Type]]:
		return iter(self._types.items())

	def locations(self) -> List[Location]:
		return list(self._types)

	def with_type(self, loc: Location, ty: Type) -> "LocationContext":
		"""Return a new context with `loc` retyped (or added)."""
		new = LocationContext()
		new._types = dict(self._types)
		new._types[loc] = ty
		return new

	def has_absurd(self) -> bool:
		return any(isinstance(ty, AbsurdType) for ty in self._types.values())

	def __contains__(self, loc: object) -> bool:
		return loc in self._types

	def __iter__(self) -> Iterator[Location]:
		return iter(self._types)

	def __len__(self) -> int:
		return len(self._types)

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, LocationContext):
			return NotImplemented
		return self._types == other._types

	def __hash__(self) -> int:
		return hash(frozenset(self._types.items()))

	def __repr__(self) -> str:
		return f"LocationContext({self})"

	def __str__(self) -> str:
		inner = ", ".join(f"{loc}: {ty}" for loc, ty in self._types.items())
		return "{" + inner + "}"


def lookup(loc: Location, ctx: LocationContext, store: ContextStore, *, rule: str) -> Type:
	"""Current type of `loc`; statics fall back to the store's StaticContext."""
	ty = ctx.get(loc)
	if ty is not None:
		return ty
	if loc.kind is LocKind.STATIC:
		decl = store.static(loc.name)
		if decl is not None:
			return decl.type
	raise fail(
		ErrorKind.MALFORMED_CONTEXT,
		f"location {loc} is not mentioned by the context",
		rule=rule,
		actual=str(ctx),
		locations=[loc],
	)


def consume(loc: Location, ctx: LocationContext, store: ContextStore, *, rule: str = "consume") -> Tuple[Type, LocationContext]:
	"""Read `loc` by value: Copy types stay put, anything else is moved out."""
	ty = lookup(loc, ctx, store, rule=rule)
	if isinstance(ty, UninitType):
		raise fail(
			ErrorKind.USE_AFTER_MOVE,
			f"use of {loc} while it is uninitialized",
			rule=rule,
			expected="an initialized value",
			actual=str(ty),
			locations=[loc],
		)
	if store.is_copy(ty):
		return ty, ctx
	if loc.kind is LocKind.STATIC:
		raise fail(
			ErrorKind.TYPE_MISMATCH,
			f"cannot move non-Copy {ty} out of static {loc}",
			rule=rule,
			expected="a Copy type",
			actual=str(ty),
			locations=[loc],
		)
	_log.debug("move out of %s (%s)", loc, ty)
	return ty, ctx.with_type(loc, uninit(store.size_of(ty)))


def assign(loc: Location, ty: Type, ctx: LocationContext, store: ContextStore, *, rule: str = "assign") -> LocationContext:
	"""Write a value of type `ty` into `loc`, which must be `uninit<size(ty)>`."""
	if loc.kind is LocKind.STATIC:
		raise fail(ErrorKind.TYPE_MISMATCH, f"static {loc} cannot be assigned", rule=rule, locations=[loc])
	current = ctx.get(loc)
	if current is None:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"assignment target {loc} is not mentioned by the context",
			rule=rule,
			actual=str(ctx),
			locations=[loc],
		)
	if not isinstance(current, UninitType):
		raise fail(
			ErrorKind.DOUBLE_INIT,
			f"{loc} is already initialized with {current}",
			rule=rule,
			expected="uninit",
			actual=str(current),
			locations=[loc],
		)
	if current.size is None:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"{loc} holds {current}; a location being written needs a known size",
			rule=rule,
			actual=str(current),
			locations=[loc],
		)
	size = store.size_of(ty)
	if size is not None and size != current.size:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"{loc} holds {current} but the value {ty} has size {size}",
			rule=rule,
			expected=str(uninit(size)),
			actual=str(current),
			locations=[loc],
		)
	return ctx.with_type(loc, ty)


def drop(loc: Location, ctx: LocationContext, store: ContextStore, *, rule: str = "drop") -> LocationContext:
	"""Explicitly forget a Copy value; linear values must be consumed instead."""
	if loc.kind is LocKind.STATIC:
		raise fail(ErrorKind.TYPE_MISMATCH, f"static {loc} cannot be dropped", rule=rule, locations=[loc])
	ty = lookup(loc, ctx, store, rule=rule)
	if isinstance(ty, UninitType):
		raise fail(
			ErrorKind.USE_AFTER_MOVE,
			f"drop of {loc} while it is uninitialized",
			rule=rule,
			actual=str(ty),
			locations=[loc],
		)
	if not store.is_copy(ty):
		raise fail(
			ErrorKind.TYPE_MISMATCH,
			f"drop of non-Copy {ty} in {loc}; linear values must be consumed",
			rule=rule,
			expected="a Copy type",
			actual=str(ty),
			locations=[loc],
		)
	return ctx.with_type(loc, uninit(store.size_of(ty)))


def first_mismatch(actual: LocationContext, required: LocationContext, store: ContextStore) -> Optional[Location]:
	"""First location whose actual type is not a subtype of the required one."""
	for loc, req_ty in required.items():
		act_ty = actual.get(loc)
		if act_ty is None and loc.kind is LocKind.STATIC:
			decl = store.static(loc.name)
			act_ty = decl.type if decl is not None else None
		if act_ty is None or not store.is_subtype(act_ty, req_ty):
			return loc
	return None


def equals_required(actual: LocationContext, required: LocationContext, store: ContextStore) -> bool:
	"""
	Depth subtyping: `actual` satisfies `required` when every location
	`required` mentions carries a subtype of the required type in `actual`.
	An absurd location in `actual` satisfies anything.
	"""
	if actual.has_absurd():
		return True
	return first_mismatch(actual, required, store) is None


def require_ctx(actual: LocationContext, required: LocationContext, store: ContextStore, *, rule: str) -> None:
	"""Raising form of `equals_required`, naming the offending location."""
	if actual.has_absurd():
		return
	loc = first_mismatch(actual, required, store)
	if loc is None:
		return
	act_ty = actual.get(loc)
	if act_ty is None:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"required location {loc} is missing",
			rule=rule,
			expected=str(required),
			actual=str(actual),
			locations=[loc],
		)
	raise fail(
		ErrorKind.TYPE_MISMATCH,
		f"{loc} has type {act_ty}, which is not a subtype of {required.get(loc)}",
		rule=rule,
		expected=str(required),
		actual=str(actual),
		locations=[loc],
	)


__all__ = [
	"LocKind",
	"Location",
	"RETURN_SLOT",
	"local",
	"param",
	"static",
	"LocationContext",
	"lookup",
	"consume",
	"assign",
	"drop",
	"first_mismatch",
	"equals_required",
	"require_ctx",
]
