# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Function verifier.

Per function:
  1. scope the store: a generic function gets an extended copy with its
     type/lifetime parameters and where-clause in scope,
  2. shape: `entry` is defined, `exit` is not, every NodeType mentions exactly
     the function's locations and only well-formed types, every jump targets
     a defined label or `exit`,
  3. entry: parameters initialized per the signature, locals and the return
     slot uninit, lifetimes `{'static} + lifetime params`, and the where-clause
     entailing whatever the entry node promises,
  4. exit: synthesized from the signature and used as the successor type of
     every edge to `exit`,
  5. every label checked once by the CFG verifier.

A rejection is always local to its function: `verify_program` collects one
result per function and never lets a failing function stop the others.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List

from tsir.cfg_verifier import CfgVerifier
from tsir.config import DEFAULT_CONFIG, VerifierConfig
from tsir.context_store import ContextStore
from tsir.core.diagnostics import Diagnostic, ErrorKind, VerifyError, fail
from tsir.core.types_core import STATIC, UNINIT_ANY, UninitType
from tsir.ir_nodes import ENTRY, EXIT, Function, NodeType, Program
from tsir.location_ctx import RETURN_SLOT, LocKind, LocationContext, local, param
from tsir.obligations import format_lifetimes, require_entailed

_log = logging.getLogger(__name__)


@dataclass
class FunctionResult:
	"""Verdict for one function."""

	name: str
	ok: bool
	diagnostics: List[Diagnostic] = field(default_factory=list)
	quantifier: str = ""

	def judgment(self) -> str:
		"""`forall<'a, T> where T: Copy. f well-typed` (or `... rejected`)."""
		verdict = "well-typed" if self.ok else "rejected"
		prefix = f"{self.quantifier} " if self.quantifier else ""
		return f"{prefix}{self.name} {verdict}"


@dataclass
class ProgramResult:
	functions: List[FunctionResult] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return all(res.ok for res in self.functions)

	@property
	def diagnostics(self) -> List[Diagnostic]:
		out: List[Diagnostic] = []
		for res in self.functions:
			out.extend(res.diagnostics)
		return out

	def by_name(self) -> Dict[str, FunctionResult]:
		return {res.name: res for res in self.functions}


def function_store(fn: Function, store: ContextStore) -> ContextStore:
	"""The store a function body is checked against (extended when generic)."""
	sig = fn.signature
	if not (sig.type_params or sig.lifetime_params or sig.trait_bounds or sig.outlives_bounds):
		return store
	return store.extend(
		type_params=sig.type_params,
		lifetime_params=sig.lifetime_params,
		assumptions=sig.trait_bounds,
		outlives=sig.outlives_bounds,
	)


def exit_node_type(fn: Function) -> NodeType:
	"""
	The NodeType of `exit`: the return slot holds the declared return type,
	parameters and locals are uninit (any size), and the obligations are
	exactly the where-clause's outlives bounds.
	"""
	sig = fn.signature
	entries = [(RETURN_SLOT, sig.return_type)]
	entries.extend((param(name), UNINIT_ANY) for name, _ty in sig.params)
	entries.extend((local(name), UNINIT_ANY) for name in fn.locals)
	return NodeType(
		LocationContext(entries),
		frozenset({STATIC, *sig.lifetime_params}),
		frozenset(sig.outlives_bounds),
	)


def check_shape(fn: Function, store: ContextStore) -> None:
	if ENTRY not in fn.labels:
		raise fail(ErrorKind.MALFORMED_CONTEXT, f"function '{fn.name}' has no '{ENTRY}' label", rule="shape")
	if EXIT in fn.labels:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"'{EXIT}' is synthesized from the signature and cannot be defined",
			rule="shape",
			label=EXIT,
		)
	expected = set(fn.locations())
	if len(expected) != 1 + len(fn.signature.params) + len(fn.locals):
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"function '{fn.name}' declares a parameter or local name twice",
			rule="shape",
		)
	for _name, ty in fn.signature.params:
		store.check_type(ty)
	store.check_type(fn.signature.return_type)
	for label, labeled in fn.label_items():
		try:
			_check_node_type_shape(labeled.node_type, expected, store)
			for target in labeled.node.successors():
				if target != EXIT and target not in fn.labels:
					raise fail(ErrorKind.MALFORMED_CONTEXT, f"jump to undefined label '{target}'", rule="shape")
		except VerifyError as err:
			raise err.at(label=label, span=getattr(labeled.node, "span", None))


def _check_node_type_shape(node_type: NodeType, expected: set, store: ContextStore) -> None:
	ctx = node_type.locations
	mentioned = set(ctx.locations())
	missing = sorted(str(loc) for loc in expected - mentioned)
	if missing:
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			"context omits " + ", ".join(missing),
			rule="shape",
			actual=str(ctx),
			locations=missing,
		)
	for loc in mentioned - expected:
		decl = store.static(loc.name) if loc.kind is LocKind.STATIC else None
		if decl is not None:
			if ctx.get(loc) != decl.type:
				raise fail(
					ErrorKind.MALFORMED_CONTEXT,
					f"static {loc} is declared {decl.type} and may only be listed at that type",
					rule="shape",
					expected=str(decl.type),
					actual=str(ctx.get(loc)),
					locations=[loc],
				)
			continue
		raise fail(
			ErrorKind.MALFORMED_CONTEXT,
			f"context mentions unknown location {loc}",
			rule="shape",
			actual=str(ctx),
			locations=[loc],
		)
	for _loc, ty in ctx.items():
		store.check_type(ty, lifetimes=node_type.lifetimes)


def check_entry(fn: Function, store: ContextStore) -> None:
	sig = fn.signature
	entry = fn.labels[ENTRY].node_type
	ctx = entry.locations
	for name, declared in sig.params:
		required = ctx.get(param(name))
		assert required is not None
		if not store.is_subtype(declared, required):
			raise fail(
				ErrorKind.TYPE_MISMATCH,
				f"parameter '{name}' arrives as {declared}, entry requires {required}",
				rule="entry",
				expected=str(required),
				actual=str(declared),
				locations=[param(name)],
			)
	for name in fn.locals:
		ty = ctx.get(local(name))
		if not isinstance(ty, UninitType) or ty.size is None:
			raise fail(
				ErrorKind.TYPE_MISMATCH,
				f"local '{name}' must be uninit at entry, not {ty}",
				rule="entry",
				expected="uninit<n>",
				actual=str(ty),
				locations=[local(name)],
			)
	ret = ctx.get(RETURN_SLOT)
	ret_size = store.size_of(sig.return_type)
	if not isinstance(ret, UninitType) or (ret_size is not None and ret.size != ret_size):
		raise fail(
			ErrorKind.TYPE_MISMATCH,
			f"return slot must be uninit<{'_' if ret_size is None else ret_size}> at entry, not {ret}",
			rule="entry",
			expected=f"uninit<{'_' if ret_size is None else ret_size}>",
			actual=str(ret),
			locations=[RETURN_SLOT],
		)
	lifetimes = frozenset({STATIC, *sig.lifetime_params})
	if entry.lifetimes != lifetimes:
		raise fail(
			ErrorKind.TYPE_MISMATCH,
			"entry lifetimes must be 'static plus the declared lifetime parameters",
			rule="entry",
			expected=format_lifetimes(lifetimes),
			actual=format_lifetimes(entry.lifetimes),
		)
	require_entailed(frozenset(sig.outlives_bounds), entry.bounds, rule="entry")


def verify_function(fn: Function, store: ContextStore, config: VerifierConfig | None = None) -> FunctionResult:
	"""Check one function; never raises VerifyError."""
	config = config or DEFAULT_CONFIG
	quantifier = fn.signature.quantifier()
	try:
		scoped = function_store(fn, store)
		check_shape(fn, scoped)
		try:
			check_entry(fn, scoped)
		except VerifyError as err:
			raise err.at(label=ENTRY, span=getattr(fn.labels[ENTRY].node, "span", None))
	except VerifyError as err:
		diag = err.at(function=fn.name, span=fn.span).diagnostic
		_log.info("%s rejected: %s", fn.name, diag.message)
		return FunctionResult(fn.name, False, [diag], quantifier)

	verifier = CfgVerifier(fn, scoped, exit_node_type(fn))
	diagnostics = verifier.check_all(all_errors=config.all_errors)
	if diagnostics:
		_log.info("%s rejected at %s", fn.name, ", ".join(str(d.label) for d in diagnostics))
	else:
		_log.info("%s well-typed (%d labels)", fn.name, len(fn.labels))
	return FunctionResult(fn.name, not diagnostics, diagnostics, quantifier)


def verify_program(program: Program, config: VerifierConfig | None = None) -> ProgramResult:
	"""
	Verify every function against the shared, read-only store. With
	`config.jobs > 1` functions are checked on a thread pool; results always
	come back in program order.
	"""
	config = config or DEFAULT_CONFIG
	functions = list(program.functions.values())
	if config.jobs > 1 and len(functions) > 1:
		with ThreadPoolExecutor(max_workers=config.jobs) as executor:
			futures = [executor.submit(verify_function, fn, program.store, config) for fn in functions]
			results = [future.result() for future in futures]
	else:
		results = [verify_function(fn, program.store, config) for fn in functions]
	return ProgramResult(results)


__all__ = [
	"FunctionResult",
	"ProgramResult",
	"function_store",
	"exit_node_type",
	"check_shape",
	"check_entry",
	"verify_function",
	"verify_program",
]
