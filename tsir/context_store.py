# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Context store: the immutable, function-scoped typing environment.

The store is built once (by the IR reader or an external lowering stage)
before any verification starts and is only read afterwards, so functions can
be verified concurrently against the same instance. A generic function gets
its own extended copy via `extend`; the original is never touched.

Trait facts are looked up, never searched for: `holds(ty, trait)` succeeds
only when a where-clause assumption or an impl fact (possibly over pattern
variables, whose own requirements are again looked up) matches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from tsir.core.diagnostics import ErrorKind, fail
from tsir.core.span import Span
from tsir.core.type_subst import Subst, apply_subst, match_type
from tsir.core.types_core import (
	STATIC,
	AbsurdType,
	Lifetime,
	ParamType,
	Type,
	UninitType,
	UserType,
	lifetimes_in,
	params_in,
)
from tsir.obligations import LifetimeOutlives, OutlivesFact

_log = logging.getLogger(__name__)

COPY = "Copy"


@dataclass(frozen=True)
class TypeDecl:
	"""
	A user type declaration.

	`variant_of` names the parent enum, written over this declaration's own
	parameters (`type Some<T> size 8 variant of Option<T>`).
	"""

	name: str
	size: int
	type_params: Tuple[str, ...] = ()
	lifetime_params: Tuple[Lifetime, ...] = ()
	variant_of: Optional[UserType] = None
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class TypeParamDecl:
	name: str
	size: Optional[int] = None

	def __str__(self) -> str:
		return self.name if self.size is None else f"{self.name} size {self.size}"


@dataclass(frozen=True)
class TraitBound:
	"""`subject: Trait` - a where-clause assumption or an impl requirement."""

	subject: Type
	trait: str

	def __str__(self) -> str:
		return f"{self.subject}: {self.trait}"


@dataclass(frozen=True)
class ImplFact:
	"""`impl<vars> Trait for target where requires` - a resolved impl fact."""

	trait: str
	target: Type
	type_vars: Tuple[str, ...] = ()
	lifetime_vars: Tuple[Lifetime, ...] = ()
	requires: Tuple[TraitBound, ...] = ()
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class PrimOpSig:
	"""Signature of a primitive unary/binary operation."""

	op: str
	operands: Tuple[Type, ...]
	result: Type


@dataclass(frozen=True)
class StaticDecl:
	name: str
	type: Type
	span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class FnSignature:
	"""Generic function signature (callee table entry and function header)."""

	name: str
	params: Tuple[Tuple[str, Type], ...]
	return_type: Type
	lifetime_params: Tuple[Lifetime, ...] = ()
	type_params: Tuple[TypeParamDecl, ...] = ()
	trait_bounds: Tuple[TraitBound, ...] = ()
	outlives_bounds: Tuple[OutlivesFact, ...] = ()
	span: Span = field(default_factory=Span, compare=False)

	@property
	def type_param_names(self) -> Tuple[str, ...]:
		return tuple(tp.name for tp in self.type_params)

	def quantifier(self) -> str:
		"""Render the universal quantifier prefix (`forall<'a, T> where T: Copy.`)."""
		binders = [str(lt) for lt in self.lifetime_params] + [tp.name for tp in self.type_params]
		if not binders:
			return ""
		where = [str(b) for b in self.trait_bounds] + [str(f) for f in self.outlives_bounds]
		clause = f" where {', '.join(where)}" if where else ""
		return f"forall<{', '.join(binders)}>{clause}."


@dataclass(frozen=True)
class Declarations:
	"""Program-wide declarations; the global part of every ContextStore."""

	types: Tuple[TypeDecl, ...] = ()
	impls: Tuple[ImplFact, ...] = ()
	prim_ops: Tuple[PrimOpSig, ...] = ()
	statics: Tuple[StaticDecl, ...] = ()
	signatures: Tuple[FnSignature, ...] = ()

	def merged(self, other: "Declarations") -> "Declarations":
		return Declarations(
			types=self.types + other.types,
			impls=self.impls + other.impls,
			prim_ops=self.prim_ops + other.prim_ops,
			statics=self.statics + other.statics,
			signatures=self.signatures + other.signatures,
		)


class ContextStore:
	"""
	Read-only typing environment: declarations plus the type/lifetime
	parameters and where-clause assumptions currently in scope.
	"""

	def __init__(
		self,
		declarations: Declarations | None = None,
		*,
		type_params: Sequence[TypeParamDecl] = (),
		lifetime_params: Sequence[Lifetime] = (),
		assumptions: Sequence[TraitBound] = (),
		outlives: Sequence[OutlivesFact] = (),
	) -> None:
		self._decls = declarations or Declarations()
		self._type_params: Tuple[TypeParamDecl, ...] = tuple(type_params)
		self._lifetime_params: Tuple[Lifetime, ...] = tuple(lifetime_params)
		self._assumptions: FrozenSet[TraitBound] = frozenset(assumptions)
		self._outlives: Tuple[OutlivesFact, ...] = tuple(outlives)

		self._types: Dict[str, TypeDecl] = {}
		self._variants_by_parent: Dict[str, List[TypeDecl]] = {}
		self._impls_by_trait: Dict[str, List[ImplFact]] = {}
		self._prim_ops: Dict[str, List[PrimOpSig]] = {}
		self._statics: Dict[str, StaticDecl] = {}
		self._signatures: Dict[str, FnSignature] = {}
		self._params_by_name: Dict[str, TypeParamDecl] = {}

		self._index_declarations()
		self._index_scope()

	# --- construction -----------------------------------------------------

	def _index_declarations(self) -> None:
		for decl in self._decls.types:
			if decl.name in self._types:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"type '{decl.name}' declared twice", span=decl.span)
			if decl.size < 0:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"type '{decl.name}' has a negative size", span=decl.span)
			self._types[decl.name] = decl
		for decl in self._decls.types:
			if decl.variant_of is not None:
				self._index_variant(decl)
		for impl in self._decls.impls:
			self._impls_by_trait.setdefault(impl.trait, []).append(impl)
		for sig in self._decls.prim_ops:
			self._prim_ops.setdefault(sig.op, []).append(sig)
		for static in self._decls.statics:
			if static.name in self._statics:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"static '{static.name}' declared twice", span=static.span)
			self._statics[static.name] = static
		for fn_sig in self._decls.signatures:
			if fn_sig.name in self._signatures:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"function '{fn_sig.name}' declared twice", span=fn_sig.span)
			self._signatures[fn_sig.name] = fn_sig

	def _index_variant(self, decl: TypeDecl) -> None:
		parent = decl.variant_of
		assert parent is not None
		parent_decl = self._types.get(parent.name)
		if parent_decl is None:
			raise fail(
				ErrorKind.MALFORMED_CONTEXT,
				f"variant '{decl.name}' of undeclared type '{parent.name}'",
				span=decl.span,
			)
		if parent_decl.size != decl.size:
			raise fail(
				ErrorKind.MALFORMED_CONTEXT,
				f"variant '{decl.name}' has size {decl.size} but '{parent.name}' has size {parent_decl.size}",
				span=decl.span,
			)
		# Every variant parameter must be recoverable from the parent instance,
		# otherwise a switch could not narrow to a concrete variant type.
		unbound = set(decl.type_params) - params_in(parent)
		unbound_lts = set(decl.lifetime_params) - lifetimes_in(parent)
		if unbound or unbound_lts:
			names = sorted(unbound) + sorted(str(lt) for lt in unbound_lts)
			raise fail(
				ErrorKind.MALFORMED_CONTEXT,
				f"variant '{decl.name}' parameters {', '.join(names)} do not appear in its parent type",
				span=decl.span,
			)
		chain: Set[str] = {decl.name}
		cursor: Optional[TypeDecl] = parent_decl
		while cursor is not None:
			if cursor.name in chain:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"variant cycle through '{decl.name}'", span=decl.span)
			chain.add(cursor.name)
			cursor = self._types.get(cursor.variant_of.name) if cursor.variant_of is not None else None
		self._variants_by_parent.setdefault(parent.name, []).append(decl)

	def _index_scope(self) -> None:
		for tp in self._type_params:
			if tp.name in self._params_by_name:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"type parameter '{tp.name}' declared twice")
			if tp.name in self._types:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"type parameter '{tp.name}' shadows a declared type")
			self._params_by_name[tp.name] = tp
		if len(set(self._lifetime_params)) != len(self._lifetime_params):
			raise fail(ErrorKind.MALFORMED_CONTEXT, "lifetime parameter declared twice")
		if STATIC in self._lifetime_params:
			raise fail(ErrorKind.MALFORMED_CONTEXT, "'static cannot be declared as a parameter")
		# Scoping: a bound may only mention parameters declared before it.
		for bound in self._assumptions:
			self._check_scoped(bound.subject, what=f"bound '{bound}'")
		for fact in self._outlives:
			if isinstance(fact, LifetimeOutlives):
				self._check_lifetime_scoped(fact.longer, what=f"bound '{fact}'")
				self._check_lifetime_scoped(fact.shorter, what=f"bound '{fact}'")
			else:
				self._check_scoped(fact.type, what=f"bound '{fact}'")
				self._check_lifetime_scoped(fact.lifetime, what=f"bound '{fact}'")

	def _check_scoped(self, ty: Type, *, what: str) -> None:
		for name in params_in(ty):
			if name not in self._params_by_name:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"{what} mentions undeclared type parameter '{name}'")
		for lt in lifetimes_in(ty):
			self._check_lifetime_scoped(lt, what=what)

	def _check_lifetime_scoped(self, lifetime: Lifetime, *, what: str) -> None:
		if lifetime != STATIC and lifetime not in self._lifetime_params:
			raise fail(ErrorKind.MALFORMED_CONTEXT, f"{what} mentions undeclared lifetime {lifetime}")

	def extend(
		self,
		*,
		type_params: Sequence[TypeParamDecl] = (),
		lifetime_params: Sequence[Lifetime] = (),
		assumptions: Sequence[TraitBound] = (),
		outlives: Sequence[OutlivesFact] = (),
	) -> "ContextStore":
		"""Return a new store with a generic function's parameters and where-clause in scope."""
		_log.debug(
			"extend store: %d type params, %d lifetime params, %d assumptions, %d outlives",
			len(type_params),
			len(lifetime_params),
			len(assumptions),
			len(outlives),
		)
		return ContextStore(
			self._decls,
			type_params=self._type_params + tuple(type_params),
			lifetime_params=self._lifetime_params + tuple(lifetime_params),
			assumptions=tuple(self._assumptions) + tuple(assumptions),
			outlives=self._outlives + tuple(outlives),
		)

	# --- lookups ----------------------------------------------------------

	def lookup_type(self, name: str) -> Optional[TypeDecl]:
		return self._types.get(name)

	def type_param(self, name: str) -> Optional[TypeParamDecl]:
		return self._params_by_name.get(name)

	def static(self, name: str) -> Optional[StaticDecl]:
		return self._statics.get(name)

	def signature(self, name: str) -> FnSignature:
		"""Callee signature lookup; a missing callee is an unresolved external fact."""
		sig = self._signatures.get(name)
		if sig is None:
			raise fail(
				ErrorKind.UNRESOLVED_TRAIT_BOUND,
				f"no signature for callee '{name}'",
				rule="call",
			)
		return sig

	def check_type(self, ty: Type, *, lifetimes: Iterable[Lifetime] | None = None) -> None:
		"""
		Well-formedness: user types are declared and applied at the right
		arity, parameters are in scope. When `lifetimes` is given, every
		lifetime argument must be `'static` or one of them.
		"""
		if isinstance(ty, UninitType):
			if ty.size is not None and ty.size < 0:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"negative size in {ty}")
			return
		if isinstance(ty, AbsurdType):
			return
		if isinstance(ty, ParamType):
			if ty.name not in self._params_by_name:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"type parameter '{ty.name}' is not in scope")
			return
		if isinstance(ty, UserType):
			decl = self._types.get(ty.name)
			if decl is None:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"unknown type '{ty.name}'")
			if len(decl.type_params) != len(ty.type_args) or len(decl.lifetime_params) != len(ty.lifetime_args):
				raise fail(
					ErrorKind.MALFORMED_CONTEXT,
					f"type '{ty}' applied with wrong arity "
					f"(expects {len(decl.lifetime_params)} lifetime and {len(decl.type_params)} type arguments)",
				)
			allowed = frozenset(lifetimes) if lifetimes is not None else None
			for lt in ty.lifetime_args:
				if allowed is not None:
					if lt != STATIC and lt not in allowed:
						raise fail(ErrorKind.MALFORMED_CONTEXT, f"lifetime {lt} in '{ty}' is not in scope")
			for arg in ty.type_args:
				self.check_type(arg, lifetimes=lifetimes)
			return
		raise AssertionError(f"unknown type variant {type(ty).__name__}")

	# --- sizes, traits, subtyping ----------------------------------------

	def size_of(self, ty: Type) -> Optional[int]:
		"""Byte size of `ty`; None for `!` (fits anywhere) and `uninit<_>`."""
		if isinstance(ty, UninitType):
			return ty.size
		if isinstance(ty, AbsurdType):
			return None
		if isinstance(ty, ParamType):
			decl = self._params_by_name.get(ty.name)
			if decl is None:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"type parameter '{ty.name}' is not in scope")
			if decl.size is None:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"type parameter '{ty.name}' has no declared size")
			return decl.size
		if isinstance(ty, UserType):
			decl = self._types.get(ty.name)
			if decl is None:
				raise fail(ErrorKind.MALFORMED_CONTEXT, f"unknown type '{ty.name}'")
			return decl.size
		raise AssertionError(f"unknown type variant {type(ty).__name__}")

	def holds(self, ty: Type, trait: str) -> bool:
		"""True only if an impl fact or where-clause postulate for `ty: trait` is present."""
		return self._holds(ty, trait, set())

	def _holds(self, ty: Type, trait: str, in_progress: Set[Tuple[Type, str]]) -> bool:
		if isinstance(ty, AbsurdType):
			return True
		if isinstance(ty, UninitType):
			return trait == COPY
		if TraitBound(ty, trait) in self._assumptions:
			return True
		key = (ty, trait)
		if key in in_progress:
			return False
		in_progress.add(key)
		try:
			for impl in self._impls_by_trait.get(trait, []):
				binding = match_type(impl.target, ty, type_vars=impl.type_vars, lifetime_vars=impl.lifetime_vars)
				if binding is None:
					continue
				if all(self._holds(apply_subst(req.subject, binding), req.trait, in_progress) for req in impl.requires):
					return True
			return False
		finally:
			in_progress.discard(key)

	def require(self, ty: Type, trait: str, *, rule: str = "trait-bound") -> None:
		if not self.holds(ty, trait):
			raise fail(
				ErrorKind.UNRESOLVED_TRAIT_BOUND,
				f"no impl or where-clause proves {ty}: {trait}",
				rule=rule,
				expected=f"{ty}: {trait}",
			)

	def is_copy(self, ty: Type) -> bool:
		return self.holds(ty, COPY)

	def parent_of(self, ty: UserType) -> Optional[UserType]:
		"""The instantiated parent enum of a variant type, if any."""
		decl = self._types.get(ty.name)
		if decl is None or decl.variant_of is None:
			return None
		subst = Subst.from_params(decl.type_params, ty.type_args, decl.lifetime_params, ty.lifetime_args)
		parent = apply_subst(decl.variant_of, subst)
		assert isinstance(parent, UserType)
		return parent

	def is_subtype(self, sub: Type, sup: Type) -> bool:
		"""
		`sub <: sup`: reflexive; `!` below everything; any `uninit<n>` below
		`uninit<_>`; a variant below its parent chain. Arguments are invariant.
		"""
		if sub == sup:
			return True
		if isinstance(sub, AbsurdType):
			return True
		if isinstance(sup, UninitType) and sup.size is None:
			return isinstance(sub, UninitType)
		cursor = sub
		while isinstance(cursor, UserType):
			parent = self.parent_of(cursor)
			if parent is None:
				return False
			if parent == sup:
				return True
			cursor = parent
		return False

	def variants_of(self, ty: UserType) -> List[UserType]:
		"""Direct variants of `ty`, instantiated with `ty`'s arguments."""
		result: List[UserType] = []
		for decl in self._variants_by_parent.get(ty.name, []):
			assert decl.variant_of is not None
			binding = match_type(
				decl.variant_of,
				ty,
				type_vars=decl.type_params,
				lifetime_vars=decl.lifetime_params,
			)
			if binding is None:
				continue
			result.append(
				UserType(
					decl.name,
					tuple(binding.types[name] for name in decl.type_params),
					tuple(binding.lifetimes[lt] for lt in decl.lifetime_params),
				)
			)
		return result

	def variant_leaves(self, ty: Type) -> FrozenSet[Type]:
		"""The leaf variants `ty` stands for; `!` stands for none."""
		if isinstance(ty, AbsurdType):
			return frozenset()
		if not isinstance(ty, UserType):
			return frozenset({ty})
		children = self.variants_of(ty)
		if not children:
			return frozenset({ty})
		leaves: set[Type] = set()
		for child in children:
			leaves |= self.variant_leaves(child)
		return frozenset(leaves)

	def prim_op(self, op: str, operand_types: Sequence[Type]) -> Type:
		"""Result type of a primitive operation applied to the given operand types."""
		for sig in self._prim_ops.get(op, []):
			if len(sig.operands) != len(operand_types):
				continue
			if all(self.is_subtype(actual, declared) for actual, declared in zip(operand_types, sig.operands)):
				return sig.result
		shown = ", ".join(str(t) for t in operand_types)
		raise fail(
			ErrorKind.TYPE_MISMATCH,
			f"no primitive '{op}' for operands ({shown})",
			rule="primitive-op",
			actual=f"({shown})",
		)


INT = UserType("Int")
BOOL = UserType("Bool")
UNIT = UserType("Unit")


def prelude_declarations() -> Declarations:
	"""Int/Bool/Unit, their Copy impls, and the arithmetic/comparison/logic ops."""
	types = (
		TypeDecl("Int", 8),
		TypeDecl("Bool", 1),
		TypeDecl("Unit", 0),
	)
	impls = tuple(ImplFact(COPY, ty) for ty in (INT, BOOL, UNIT))
	ops: List[PrimOpSig] = []
	for op in ("+", "-", "*", "/", "%"):
		ops.append(PrimOpSig(op, (INT, INT), INT))
	for op in ("==", "!=", "<", "<=", ">", ">="):
		ops.append(PrimOpSig(op, (INT, INT), BOOL))
	for op in ("==", "!="):
		ops.append(PrimOpSig(op, (BOOL, BOOL), BOOL))
	for op in ("&&", "||"):
		ops.append(PrimOpSig(op, (BOOL, BOOL), BOOL))
	ops.append(PrimOpSig("neg", (INT,), INT))
	ops.append(PrimOpSig("not", (BOOL,), BOOL))
	return Declarations(types=types, impls=impls, prim_ops=tuple(ops))


def prelude() -> ContextStore:
	return ContextStore(prelude_declarations())


__all__ = [
	"COPY",
	"TypeDecl",
	"TypeParamDecl",
	"TraitBound",
	"ImplFact",
	"PrimOpSig",
	"StaticDecl",
	"FnSignature",
	"Declarations",
	"ContextStore",
	"INT",
	"BOOL",
	"UNIT",
	"prelude_declarations",
	"prelude",
]
