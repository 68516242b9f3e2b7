# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Type core shared by the context store, the location-context engine and the
obligation tracker.

A location's type is one of four variants:
  * `UninitType(size)`  - a sized uninitialized slot; `size=None` (`uninit<_>`)
    is only meaningful inside a *required* context, where it matches any size.
  * `AbsurdType`        - the uninhabited type `!`; fits any size.
  * `ParamType(name)`   - a type parameter of the enclosing generic function.
  * `UserType`          - a declared name applied to lifetime/type arguments.

Types are plain frozen values; declarations (sizes, variants, impls) live in
the ContextStore.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple


@dataclass(frozen=True)
class Lifetime:
	"""A region name. `'static` is the single global lifetime."""

	name: str

	@property
	def is_static(self) -> bool:
		return self.name == "static"

	def __str__(self) -> str:
		return f"'{self.name}"


STATIC = Lifetime("static")


class Type:
	"""Base class of the closed set of type variants."""

	__slots__ = ()


@dataclass(frozen=True)
class UninitType(Type):
	size: Optional[int] = None

	def __str__(self) -> str:
		return f"uninit<{'_' if self.size is None else self.size}>"


@dataclass(frozen=True)
class AbsurdType(Type):
	def __str__(self) -> str:
		return "!"


@dataclass(frozen=True)
class ParamType(Type):
	name: str

	def __str__(self) -> str:
		return self.name


@dataclass(frozen=True)
class UserType(Type):
	name: str
	type_args: Tuple[Type, ...] = ()
	lifetime_args: Tuple[Lifetime, ...] = ()

	def __str__(self) -> str:
		args = [str(lt) for lt in self.lifetime_args] + [str(t) for t in self.type_args]
		if not args:
			return self.name
		return f"{self.name}<{', '.join(args)}>"


ABSURD = AbsurdType()
UNINIT_ANY = UninitType(None)


def uninit(size: Optional[int]) -> UninitType:
	return UninitType(size)


def lifetimes_in(ty: Type) -> FrozenSet[Lifetime]:
	"""All lifetimes mentioned anywhere inside `ty`."""
	if not isinstance(ty, UserType):
		return frozenset()
	found = set(ty.lifetime_args)
	for arg in ty.type_args:
		found |= lifetimes_in(arg)
	return frozenset(found)


def params_in(ty: Type) -> FrozenSet[str]:
	"""Names of all type parameters mentioned inside `ty`."""
	if isinstance(ty, ParamType):
		return frozenset({ty.name})
	if isinstance(ty, UserType):
		found: set[str] = set()
		for arg in ty.type_args:
			found |= params_in(arg)
		return frozenset(found)
	return frozenset()


def mentions_lifetime(ty: Type, lifetime: Lifetime) -> bool:
	return lifetime in lifetimes_in(ty)


__all__ = [
	"Lifetime",
	"STATIC",
	"Type",
	"UninitType",
	"AbsurdType",
	"ParamType",
	"UserType",
	"ABSURD",
	"UNINIT_ANY",
	"uninit",
	"lifetimes_in",
	"params_in",
	"mentions_lifetime",
]
