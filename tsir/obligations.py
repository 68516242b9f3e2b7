# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lifetime & obligation tracker.

Every CFG point carries a LifetimeContext (the set of active lifetimes) and a
BoundContext (the outlives facts the point can prove to its successors). Facts
are either `'a: 'b` (lifetime `'a` does not end before `'b`) or `T: 'a` (every
lifetime inside `T` outlives `'a`).

Entailment (`OB0 ⊢ OB1`) is the only way facts move between points. A fact
of OB1 is derivable from OB0 by:
  - reflexivity (`'a: 'a`) and transitivity of the lifetime relation,
  - `'static` outliving every lifetime,
  - structural decomposition of `T: 'a` for user types, while type
    parameters only outlive what OB0 says they do.

Requiring fewer facts is the more permissive NodeType, so successors are
checked with `entails(node_bounds, successor_bounds)`.

Begin/end discipline: `begin 'l` lets the successor assume `'x: 'l` for every
`'x` already active; `end 'l` must prove `'x: 'l` for every `'x` still active
(`'l` outlives-at `'x`). Together they reject lifetimes that end out of
nesting order unless the where-clause says they may.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, Iterable, List, Set, Tuple

from tsir.core.diagnostics import ErrorKind, fail
from tsir.core.type_subst import Subst, apply_subst, subst_lifetime
from tsir.core.types_core import (
	STATIC,
	AbsurdType,
	Lifetime,
	ParamType,
	Type,
	UninitType,
	UserType,
	lifetimes_in,
)

if TYPE_CHECKING:
	from tsir.location_ctx import LocationContext

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifetimeOutlives:
	"""`longer: shorter` - `longer` does not end before `shorter`."""

	longer: Lifetime
	shorter: Lifetime

	def __str__(self) -> str:
		return f"{self.longer}: {self.shorter}"


@dataclass(frozen=True)
class TypeOutlives:
	"""`type: lifetime` - every region inside `type` outlives `lifetime`."""

	type: Type
	lifetime: Lifetime

	def __str__(self) -> str:
		return f"{self.type}: {self.lifetime}"


OutlivesFact = LifetimeOutlives | TypeOutlives

LifetimeContext = FrozenSet[Lifetime]
BoundContext = FrozenSet[OutlivesFact]


def format_lifetimes(lifetimes: Iterable[Lifetime]) -> str:
	return "{" + ", ".join(sorted(str(lt) for lt in lifetimes)) + "}"


def format_bounds(bounds: Iterable[OutlivesFact]) -> str:
	return "{" + ", ".join(sorted(str(f) for f in bounds)) + "}"


def subst_fact(fact: OutlivesFact, subst: Subst) -> OutlivesFact:
	"""Instantiate a where-clause fact with call-site arguments."""
	if isinstance(fact, LifetimeOutlives):
		return LifetimeOutlives(subst_lifetime(fact.longer, subst), subst_lifetime(fact.shorter, subst))
	return TypeOutlives(apply_subst(fact.type, subst), subst_lifetime(fact.lifetime, subst))


class OutlivesRelation:
	"""
	Reflexive-transitive closure of the lifetime facts in a BoundContext.

	Built once per entailment query; BoundContexts are small so a naive
	closure over the mentioned lifetimes is enough.
	"""

	def __init__(self, bounds: Iterable[OutlivesFact]) -> None:
		self._type_facts: List[TypeOutlives] = []
		edges: Set[Tuple[Lifetime, Lifetime]] = set()
		for fact in bounds:
			if isinstance(fact, LifetimeOutlives):
				edges.add((fact.longer, fact.shorter))
			else:
				self._type_facts.append(fact)
		self._pairs = _transitive_closure(edges)

	def outlives(self, longer: Lifetime, shorter: Lifetime) -> bool:
		if longer == shorter or longer == STATIC:
			return True
		return (longer, shorter) in self._pairs or (longer, STATIC) in self._pairs

	def type_outlives(self, ty: Type, lifetime: Lifetime) -> bool:
		for fact in self._type_facts:
			if fact.type == ty and self.outlives(fact.lifetime, lifetime):
				return True
		if isinstance(ty, (UninitType, AbsurdType)):
			return True
		if isinstance(ty, ParamType):
			return False
		if isinstance(ty, UserType):
			return all(self.outlives(lt, lifetime) for lt in ty.lifetime_args) and all(
				self.type_outlives(arg, lifetime) for arg in ty.type_args
			)
		return False

	def proves(self, fact: OutlivesFact) -> bool:
		if isinstance(fact, LifetimeOutlives):
			return self.outlives(fact.longer, fact.shorter)
		return self.type_outlives(fact.type, fact.lifetime)


def _transitive_closure(edges: Set[Tuple[Lifetime, Lifetime]]) -> Set[Tuple[Lifetime, Lifetime]]:
	closure = set(edges)
	changed = True
	while changed:
		changed = False
		for a, b in list(closure):
			for c, d in list(closure):
				if b == c and (a, d) not in closure:
					closure.add((a, d))
					changed = True
	return closure


def unproved_facts(available: Iterable[OutlivesFact], required: Iterable[OutlivesFact]) -> List[OutlivesFact]:
	"""Facts of `required` that `available` cannot derive (sorted for stable output)."""
	relation = OutlivesRelation(available)
	missing = [fact for fact in required if not relation.proves(fact)]
	return sorted(missing, key=str)


def entails(available: Iterable[OutlivesFact], required: Iterable[OutlivesFact]) -> bool:
	return not unproved_facts(available, required)


def require_entailed(
	available: BoundContext,
	required: Iterable[OutlivesFact],
	*,
	rule: str,
) -> None:
	"""Raise ObligationUnproved naming every fact `available` cannot derive."""
	missing = unproved_facts(available, required)
	if missing:
		raise fail(
			ErrorKind.OBLIGATION_UNPROVED,
			"outlives obligation not entailed: " + ", ".join(str(f) for f in missing),
			rule=rule,
			expected=format_bounds(missing),
			actual=format_bounds(available),
		)


def begin_lifetime(lifetime: Lifetime, active: LifetimeContext, bounds: BoundContext) -> Tuple[LifetimeContext, BoundContext]:
	"""
	Start `lifetime`.

	Returns the lifetime context the successor must declare and the facts the
	successor may assume: the incoming facts plus `'x: lifetime` for every
	already active `'x`.
	"""
	if lifetime in active:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"lifetime {lifetime} is already active",
			rule="lifetime-begin",
			actual=format_lifetimes(active),
		)
	assumed = frozenset(LifetimeOutlives(outer, lifetime) for outer in active)
	return active | {lifetime}, bounds | assumed


def end_lifetime(lifetime: Lifetime, active: LifetimeContext, ctx: "LocationContext") -> Tuple[LifetimeContext, BoundContext]:
	"""
	End `lifetime`.

	Fails DanglingLifetime while any typed location still mentions it. Returns
	the successor's lifetime context and the derived outlives-at obligations
	(`'x: lifetime` for every `'x` that stays active).
	"""
	if lifetime not in active:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"lifetime {lifetime} is not active",
			rule="lifetime-end",
			actual=format_lifetimes(active),
		)
	if lifetime == STATIC:
		raise fail(ErrorKind.MALFORMED_CONTEXT, "'static never ends", rule="lifetime-end")
	dangling = [loc for loc, ty in ctx.items() if lifetime in lifetimes_in(ty)]
	if dangling:
		first = dangling[0]
		raise fail(
			ErrorKind.DANGLING_LIFETIME,
			f"lifetime {lifetime} ends while {first} still has type {ctx.get(first)}",
			rule="lifetime-end",
			expected=f"no location mentions {lifetime}",
			actual=str(ctx),
			locations=list(dangling),
		)
	remaining = active - {lifetime}
	derived = frozenset(LifetimeOutlives(outer, lifetime) for outer in remaining)
	_log.debug("end %s: derived obligations %s", lifetime, format_bounds(derived))
	return remaining, derived


__all__ = [
	"LifetimeOutlives",
	"TypeOutlives",
	"OutlivesFact",
	"LifetimeContext",
	"BoundContext",
	"OutlivesRelation",
	"format_lifetimes",
	"format_bounds",
	"subst_fact",
	"unproved_facts",
	"entails",
	"require_entailed",
	"begin_lifetime",
	"end_lifetime",
]
