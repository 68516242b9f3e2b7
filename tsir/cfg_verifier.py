# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
CFG verifier: one typing rule per node kind.

Every label's NodeType is declared input, so each node is checked once and
independently: start from the node's own declared NodeType, apply the node's
rule, and show that the resulting context satisfies each successor's declared
NodeType. Loops need no fixpoint iteration; a back edge is just another
successor whose NodeType is already known.

Successor check (all ordinary nodes):
  - locations: depth subtyping against the successor's LocationContext,
  - lifetimes: the successor's LifetimeContext must be the same set,
  - bounds:    the node's BoundContext must entail the successor's.
A context holding an absurd location satisfies any successor.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, List, Tuple

from tsir.context_store import BOOL, ContextStore
from tsir.core.diagnostics import Diagnostic, ErrorKind, VerifyError, fail
from tsir.core.type_subst import Subst, apply_subst
from tsir.core.types_core import ABSURD, STATIC, AbsurdType, Lifetime, Type, UninitType, lifetimes_in
from tsir.ir_nodes import (
	EXIT,
	Assign,
	BinaryOp,
	Call,
	Const,
	DeadCode,
	Drop,
	Function,
	If,
	LifetimeBegin,
	LifetimeEnd,
	Node,
	NodeType,
	Operand,
	RValue,
	Switch,
	UnaryOp,
	Use,
)
from tsir.location_ctx import Location, LocationContext, assign, consume, drop, lookup, require_ctx
from tsir.obligations import (
	BoundContext,
	LifetimeContext,
	begin_lifetime,
	end_lifetime,
	format_lifetimes,
	require_entailed,
	subst_fact,
)

_log = logging.getLogger(__name__)


class CfgVerifier:
	"""
	Checks every label of one function against a (function-scoped) store.

	`exit_type` is the NodeType synthesized for the `exit` label by the
	function verifier.
	"""

	def __init__(self, fn: Function, store: ContextStore, exit_type: NodeType) -> None:
		self.fn = fn
		self.store = store
		self.exit_type = exit_type

	# --- driver -----------------------------------------------------------

	def check_all(self, *, all_errors: bool = False) -> List[Diagnostic]:
		"""
		Check every label once. Stops at the first rejection unless
		`all_errors` is set, in which case each failing label contributes one
		diagnostic.
		"""
		diagnostics: List[Diagnostic] = []
		for label in self.fn.labels:
			try:
				self.check_label(label)
			except VerifyError as err:
				diagnostics.append(err.diagnostic)
				if not all_errors:
					break
		return diagnostics

	def check_label(self, label: str) -> None:
		labeled = self.fn.labels[label]
		node_type = labeled.node_type
		node = labeled.node
		try:
			if node_type.locations.has_absurd():
				# Unreachable: an absurd location witnesses that control never gets here.
				_log.debug("%s@%s: unreachable (absurd in %s)", self.fn.name, label, node_type.locations)
				return
			self.check_node(node, node_type)
		except VerifyError as err:
			raise err.at(label=label, function=self.fn.name, span=getattr(node, "span", None))
		_log.debug("%s@%s: ok", self.fn.name, label)

	def check_node(self, node: Node, node_type: NodeType) -> None:
		"""Exhaustive dispatch over the closed node-kind set."""
		if isinstance(node, Assign):
			self._check_assign(node, node_type)
		elif isinstance(node, Call):
			self._check_call(node, node_type)
		elif isinstance(node, If):
			self._check_if(node, node_type)
		elif isinstance(node, Switch):
			self._check_switch(node, node_type)
		elif isinstance(node, Drop):
			self._check_drop(node, node_type)
		elif isinstance(node, LifetimeBegin):
			self._check_begin(node, node_type)
		elif isinstance(node, LifetimeEnd):
			self._check_end(node, node_type)
		elif isinstance(node, DeadCode):
			self._check_dead(node, node_type)
		else:
			raise AssertionError(f"unhandled node kind {type(node).__name__}")

	# --- successors -------------------------------------------------------

	def successor_type(self, target: str, *, rule: str) -> NodeType:
		if target == EXIT:
			return self.exit_type
		labeled = self.fn.labels.get(target)
		if labeled is None:
			raise fail(ErrorKind.MALFORMED_CONTEXT, f"jump to undefined label '{target}'", rule=rule)
		return labeled.node_type

	def check_successor(
		self,
		target: str,
		ctx: LocationContext,
		lifetimes: LifetimeContext,
		bounds: BoundContext,
		*,
		rule: str,
	) -> None:
		succ = self.successor_type(target, rule=rule)
		if ctx.has_absurd():
			return
		try:
			require_ctx(ctx, succ.locations, self.store, rule=rule)
			if succ.lifetimes != lifetimes:
				raise fail(
					ErrorKind.TYPE_MISMATCH,
					"active lifetimes differ from the successor's",
					rule=rule,
					expected=format_lifetimes(succ.lifetimes),
					actual=format_lifetimes(lifetimes),
				)
			require_entailed(bounds, succ.bounds, rule=rule)
		except VerifyError as err:
			err.diagnostic.notes.append(f"while checking the edge to '{target}'")
			raise

	# --- operands -----------------------------------------------------------

	def eval_operand(
		self, operand: Operand, ctx: LocationContext, active: LifetimeContext, *, rule: str
	) -> Tuple[Type, LocationContext]:
		if isinstance(operand, Use):
			return consume(operand.loc, ctx, self.store, rule=rule)
		if isinstance(operand, Const):
			if isinstance(operand.type, (UninitType, AbsurdType)):
				raise fail(ErrorKind.TYPE_MISMATCH, f"constant cannot have type {operand.type}", rule=rule)
			self._check_active_type(operand.type, active, rule=rule)
			return operand.type, ctx
		raise AssertionError(f"unhandled operand kind {type(operand).__name__}")

	def eval_rvalue(
		self, value: RValue, ctx: LocationContext, active: LifetimeContext, *, rule: str
	) -> Tuple[Type, LocationContext]:
		if isinstance(value, UnaryOp):
			ty, ctx = self.eval_operand(value.operand, ctx, active, rule=rule)
			return self.store.prim_op(value.op, (ty,)), ctx
		if isinstance(value, BinaryOp):
			left, ctx = self.eval_operand(value.left, ctx, active, rule=rule)
			right, ctx = self.eval_operand(value.right, ctx, active, rule=rule)
			return self.store.prim_op(value.op, (left, right)), ctx
		return self.eval_operand(value, ctx, active, rule=rule)

	def _check_active_type(self, ty: Type, active: LifetimeContext, *, rule: str) -> None:
		"""Well-formed, and every lifetime it mentions is live here."""
		self.store.check_type(ty)
		dangling = sorted(str(lt) for lt in lifetimes_in(ty) if lt != STATIC and lt not in active)
		if dangling:
			raise fail(
				ErrorKind.DANGLING_LIFETIME,
				f"{ty} mentions {', '.join(dangling)}, not active here",
				rule=rule,
				expected=format_lifetimes(active),
				actual=str(ty),
			)

	def _require_uninit_dest(self, dest: Location, ctx: LocationContext, *, rule: str) -> None:
		current = lookup(dest, ctx, self.store, rule=rule)
		if not isinstance(current, UninitType):
			raise fail(
				ErrorKind.DOUBLE_INIT,
				f"{dest} is already initialized with {current}",
				rule=rule,
				expected="uninit",
				actual=str(current),
				locations=[dest],
			)
		if current.size is None:
			raise fail(
				ErrorKind.MALFORMED_CONTEXT,
				f"{dest} holds {current}; a location being written needs a known size",
				rule=rule,
				actual=str(current),
				locations=[dest],
			)

	# --- rules --------------------------------------------------------------

	def _check_assign(self, node: Assign, node_type: NodeType) -> None:
		rule = "assign"
		ctx = node_type.locations
		self._require_uninit_dest(node.dest, ctx, rule=rule)
		ty, ctx = self.eval_rvalue(node.value, ctx, node_type.lifetimes, rule=rule)
		ctx = assign(node.dest, ty, ctx, self.store, rule=rule)
		self.check_successor(node.target, ctx, node_type.lifetimes, node_type.bounds, rule=rule)

	def _check_call(self, node: Call, node_type: NodeType) -> None:
		rule = "call"
		sig = self.store.signature(node.callee)
		if len(node.type_args) != len(sig.type_params):
			raise fail(
				ErrorKind.TYPE_MISMATCH,
				f"'{node.callee}' expects {len(sig.type_params)} type arguments, got {len(node.type_args)}",
				rule=rule,
			)
		if len(node.lifetime_args) != len(sig.lifetime_params):
			raise fail(
				ErrorKind.TYPE_MISMATCH,
				f"'{node.callee}' expects {len(sig.lifetime_params)} lifetime arguments, got {len(node.lifetime_args)}",
				rule=rule,
			)
		if len(node.args) != len(sig.params):
			raise fail(
				ErrorKind.TYPE_MISMATCH,
				f"'{node.callee}' expects {len(sig.params)} arguments, got {len(node.args)}",
				rule=rule,
			)
		self._check_lifetime_args(node.lifetime_args, node_type.lifetimes, rule=rule)
		for tp, arg in zip(sig.type_params, node.type_args):
			self._check_active_type(arg, node_type.lifetimes, rule=rule)
			arg_size = self.store.size_of(arg)
			if tp.size is not None and arg_size is not None and arg_size != tp.size:
				raise fail(
					ErrorKind.TYPE_MISMATCH,
					f"type argument {arg} has size {arg_size} but {tp.name} is declared with size {tp.size}",
					rule=rule,
				)

		subst = Subst.from_params(sig.type_param_names, node.type_args, sig.lifetime_params, node.lifetime_args)
		ctx = node_type.locations
		self._require_uninit_dest(node.dest, ctx, rule=rule)
		for operand, (pname, pty) in zip(node.args, sig.params):
			expected = apply_subst(pty, subst)
			actual, ctx = self.eval_operand(operand, ctx, node_type.lifetimes, rule=rule)
			if not self.store.is_subtype(actual, expected):
				raise fail(
					ErrorKind.TYPE_MISMATCH,
					f"argument '{pname}' of '{node.callee}' has type {actual}, expected {expected}",
					rule=rule,
					expected=str(expected),
					actual=str(actual),
				)
		for bound in sig.trait_bounds:
			self.store.require(apply_subst(bound.subject, subst), bound.trait, rule="call-bounds")
		instantiated = [subst_fact(fact, subst) for fact in sig.outlives_bounds]
		require_entailed(node_type.bounds, instantiated, rule="call-obligations")

		ret = apply_subst(sig.return_type, subst)
		ctx = assign(node.dest, ret, ctx, self.store, rule=rule)
		self.check_successor(node.target, ctx, node_type.lifetimes, node_type.bounds, rule=rule)

	def _check_lifetime_args(self, args: Tuple[Lifetime, ...], active: LifetimeContext, *, rule: str) -> None:
		for lt in args:
			if lt not in active:
				raise fail(
					ErrorKind.DANGLING_LIFETIME,
					f"lifetime argument {lt} is not active at the call",
					rule=rule,
					expected=f"{lt} in {format_lifetimes(active)}",
					actual=format_lifetimes(active),
				)

	def _check_if(self, node: If, node_type: NodeType) -> None:
		rule = "if"
		ty, ctx = self.eval_operand(node.cond, node_type.locations, node_type.lifetimes, rule=rule)
		if not self.store.is_subtype(ty, BOOL):
			raise fail(
				ErrorKind.TYPE_MISMATCH,
				f"condition has type {ty}",
				rule=rule,
				expected=str(BOOL),
				actual=str(ty),
			)
		for target in (node.then_target, node.else_target):
			self.check_successor(target, ctx, node_type.lifetimes, node_type.bounds, rule=rule)

	def _check_switch(self, node: Switch, node_type: NodeType) -> None:
		rule = "switch"
		ctx = node_type.locations
		current = lookup(node.subject, ctx, self.store, rule=rule)
		if isinstance(current, UninitType):
			raise fail(
				ErrorKind.USE_AFTER_MOVE,
				f"switch on {node.subject} while it is uninitialized",
				rule=rule,
				actual=str(current),
				locations=[node.subject],
			)
		self.store.check_type(node.static_type)
		if not self.store.is_subtype(current, node.static_type):
			raise fail(
				ErrorKind.TYPE_MISMATCH,
				f"{node.subject} has type {current}, not a subtype of the switched type {node.static_type}",
				rule=rule,
				expected=str(node.static_type),
				actual=str(current),
				locations=[node.subject],
			)
		covered: FrozenSet[Type] = frozenset()
		for arm in node.arms:
			self.store.check_type(arm.type)
			if not self.store.is_subtype(arm.type, node.static_type):
				raise fail(
					ErrorKind.TYPE_MISMATCH,
					f"branch type {arm.type} is not a variant of {node.static_type}",
					rule=rule,
					expected=str(node.static_type),
					actual=str(arm.type),
				)
			covered |= self.store.variant_leaves(arm.type)
		missing = self.store.variant_leaves(node.static_type) - covered
		if missing:
			shown = ", ".join(sorted(str(t) for t in missing))
			raise fail(
				ErrorKind.NON_EXHAUSTIVE_SWITCH,
				f"switch over {node.static_type} does not cover {shown}",
				rule=rule,
				expected=str(node.static_type),
				actual=", ".join(str(arm.type) for arm in node.arms) or "no branches",
				locations=[node.subject],
			)
		for arm in node.arms:
			# Already more specific than the arm: keep what is known. An arm
			# sharing no variant with the subject is unreachable.
			if self.store.is_subtype(current, arm.type):
				narrowed_ty = current
			elif self.store.variant_leaves(current) & self.store.variant_leaves(arm.type):
				narrowed_ty = arm.type
			else:
				narrowed_ty = ABSURD
			narrowed = ctx.with_type(node.subject, narrowed_ty)
			self.check_successor(arm.target, narrowed, node_type.lifetimes, node_type.bounds, rule=rule)

	def _check_drop(self, node: Drop, node_type: NodeType) -> None:
		rule = "drop"
		ctx = drop(node.loc, node_type.locations, self.store, rule=rule)
		self.check_successor(node.target, ctx, node_type.lifetimes, node_type.bounds, rule=rule)

	def _check_begin(self, node: LifetimeBegin, node_type: NodeType) -> None:
		rule = "lifetime-begin"
		lifetimes, assumed = begin_lifetime(node.lifetime, node_type.lifetimes, node_type.bounds)
		self.check_successor(node.target, node_type.locations, lifetimes, assumed, rule=rule)

	def _check_end(self, node: LifetimeEnd, node_type: NodeType) -> None:
		rule = "lifetime-end"
		ctx = node_type.locations
		lifetimes, derived = end_lifetime(node.lifetime, node_type.lifetimes, ctx)
		succ = self.successor_type(node.target, rule=rule)
		# The derived outlives-at facts and the successor's own obligations must
		# both follow from what this node can prove.
		require_entailed(node_type.bounds, derived | succ.bounds, rule=rule)
		self.check_successor(node.target, ctx, lifetimes, node_type.bounds, rule=rule)

	def _check_dead(self, node: DeadCode, node_type: NodeType) -> None:
		# Reached only when the incoming context has no absurd location.
		raise fail(
			ErrorKind.TYPE_MISMATCH,
			"unreachable node whose context has no absurd location",
			rule="dead-code",
			expected="some location of type !",
			actual=str(node_type.locations),
		)


__all__ = ["CfgVerifier"]
