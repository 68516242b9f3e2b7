# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Type/lifetime parameter substitution and pattern matching helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Sequence

from tsir.core.types_core import Lifetime, ParamType, Type, UserType


@dataclass(frozen=True)
class Subst:
	"""Explicit substitution of type parameter names and lifetimes."""

	types: Mapping[str, Type] = field(default_factory=dict)
	lifetimes: Mapping[Lifetime, Lifetime] = field(default_factory=dict)

	@classmethod
	def from_params(
		cls,
		type_params: Sequence[str],
		type_args: Sequence[Type],
		lifetime_params: Sequence[Lifetime] = (),
		lifetime_args: Sequence[Lifetime] = (),
	) -> "Subst":
		"""Zip declared parameters with actual arguments (arity is the caller's check)."""
		return cls(
			types=dict(zip(type_params, type_args)),
			lifetimes=dict(zip(lifetime_params, lifetime_args)),
		)

	def is_empty(self) -> bool:
		return not self.types and not self.lifetimes


def subst_lifetime(lifetime: Lifetime, subst: Subst) -> Lifetime:
	return subst.lifetimes.get(lifetime, lifetime)


def apply_subst(ty: Type, subst: Subst) -> Type:
	"""Apply a substitution to a type, returning a (possibly new) type."""
	if subst.is_empty():
		return ty
	if isinstance(ty, ParamType):
		return subst.types.get(ty.name, ty)
	if isinstance(ty, UserType):
		if not ty.type_args and not ty.lifetime_args:
			return ty
		new_types = tuple(apply_subst(arg, subst) for arg in ty.type_args)
		new_lifetimes = tuple(subst_lifetime(lt, subst) for lt in ty.lifetime_args)
		if new_types == ty.type_args and new_lifetimes == ty.lifetime_args:
			return ty
		return UserType(ty.name, new_types, new_lifetimes)
	return ty


def match_type(
	pattern: Type,
	ty: Type,
	*,
	type_vars: Iterable[str] = (),
	lifetime_vars: Iterable[Lifetime] = (),
) -> Optional[Subst]:
	"""
	Match `ty` against `pattern`, binding the given pattern variables.

	Returns the binding substitution, or None when the shapes disagree or a
	variable would be bound to two different values. Names that are not
	pattern variables must match literally.
	"""
	tvars = frozenset(type_vars)
	lvars = frozenset(lifetime_vars)
	types: Dict[str, Type] = {}
	lifetimes: Dict[Lifetime, Lifetime] = {}

	def bind_lifetime(pat: Lifetime, actual: Lifetime) -> bool:
		if pat not in lvars:
			return pat == actual
		prev = lifetimes.setdefault(pat, actual)
		return prev == actual

	def go(pat: Type, actual: Type) -> bool:
		if isinstance(pat, ParamType) and pat.name in tvars:
			prev = types.setdefault(pat.name, actual)
			return prev == actual
		if isinstance(pat, UserType):
			if not isinstance(actual, UserType) or actual.name != pat.name:
				return False
			if len(pat.type_args) != len(actual.type_args) or len(pat.lifetime_args) != len(actual.lifetime_args):
				return False
			for pl, al in zip(pat.lifetime_args, actual.lifetime_args):
				if not bind_lifetime(pl, al):
					return False
			return all(go(pa, aa) for pa, aa in zip(pat.type_args, actual.type_args))
		return pat == actual

	if not go(pattern, ty):
		return None
	return Subst(types=types, lifetimes=lifetimes)


__all__ = ["Subst", "apply_subst", "subst_lifetime", "match_type"]
