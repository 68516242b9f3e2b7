# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
CFG verifier: one typing rule per node kind, checked label by label.

Most tests check a single `entry` node against hand-written successor
NodeTypes; the successors' own nodes are irrelevant there (DeadCode
placeholders) because every label is checked independently.
"""

from __future__ import annotations

import pytest

from tsir.cfg_verifier import CfgVerifier
from tsir.context_store import (
	BOOL,
	COPY,
	INT,
	UNIT,
	ContextStore,
	Declarations,
	FnSignature,
	TraitBound,
	TypeDecl,
	TypeParamDecl,
	prelude_declarations,
)
from tsir.core.diagnostics import ErrorKind, VerifyError
from tsir.core.types_core import ABSURD, STATIC, UNINIT_ANY, Lifetime, ParamType, UserType, uninit
from tsir.fn_verifier import exit_node_type, function_store
from tsir.ir_nodes import (
	Assign,
	BinaryOp,
	Call,
	Const,
	DeadCode,
	Drop,
	Function,
	If,
	LabeledNode,
	LifetimeBegin,
	LifetimeEnd,
	NodeType,
	Switch,
	SwitchArm,
	UnaryOp,
	Use,
)
from tsir.location_ctx import RETURN_SLOT, LocationContext, local
from tsir.obligations import LifetimeOutlives

A = Lifetime("a")
B = Lifetime("b")
X_LT = Lifetime("x")
Y_LT = Lifetime("y")
T = ParamType("T")

BOX = UserType("Box")
SHAPE = UserType("Shape")
CIRCLE = UserType("Circle")
SQUARE = UserType("Square")
TRI = UserType("Tri")

R = local("r")
Q = local("q")
X = local("x")
Y = local("y")
C = local("c")


def _ref(lt, ty=INT):
	return UserType("Ref", (ty,), (lt,))


def _store() -> ContextStore:
	extra = Declarations(
		types=(
			TypeDecl("Box", 8),
			TypeDecl("Shape", 8),
			TypeDecl("Circle", 8, variant_of=SHAPE),
			TypeDecl("Square", 8, variant_of=SHAPE),
			TypeDecl("Tri", 8, variant_of=SHAPE),
			TypeDecl("Ref", 8, type_params=("T",), lifetime_params=(A,)),
		),
		signatures=(
			FnSignature(
				"pick",
				(("r", _ref(X_LT)),),
				_ref(Y_LT),
				lifetime_params=(X_LT, Y_LT),
				outlives_bounds=(LifetimeOutlives(X_LT, Y_LT),),
			),
			FnSignature(
				"dup",
				(("v", T),),
				T,
				type_params=(TypeParamDecl("T", 8),),
				trait_bounds=(TraitBound(T, COPY),),
			),
			FnSignature("make_box", (("n", INT),), BOX),
			FnSignature("abort", (), ABSURD),
		),
	)
	return ContextStore(prelude_declarations().merged(extra))


STORE = _store()


def _nt(mapping, lifetimes=(STATIC,), bounds=()) -> NodeType:
	return NodeType(LocationContext(list(mapping.items())), frozenset(lifetimes), frozenset(bounds))


def _fn(entry_type, entry_node, successors=None, locals_=("r", "q", "x", "y", "c"), signature=None) -> Function:
	labels = {"entry": LabeledNode(entry_type, entry_node)}
	for label, node_type in (successors or {}).items():
		labels[label] = LabeledNode(node_type, DeadCode())
	sig = signature or FnSignature("f", (), UNIT)
	return Function(sig, tuple(locals_), labels)


def _check(fn: Function, label: str = "entry") -> None:
	CfgVerifier(fn, function_store(fn, STORE), exit_node_type(fn)).check_label(label)


def _kind(fn: Function, label: str = "entry") -> ErrorKind | None:
	with pytest.raises(VerifyError) as exc:
		_check(fn, label)
	assert exc.value.diagnostic.label == label
	return exc.value.kind


# --- Assign -------------------------------------------------------------------


def test_assign_binary_op_writes_result():
	entry = _nt({X: INT, Y: uninit(1)})
	node = Assign(Y, BinaryOp("<", Use(X), Const(INT, 3)), "k")
	_check(_fn(entry, node, {"k": _nt({X: INT, Y: BOOL})}))


def test_assign_unary_op():
	entry = _nt({X: BOOL, Y: uninit(1)})
	node = Assign(Y, UnaryOp("not", Use(X)), "k")
	_check(_fn(entry, node, {"k": _nt({X: BOOL, Y: BOOL})}))


def test_assign_into_initialized_location_is_double_init():
	entry = _nt({X: INT, Y: INT})
	fn = _fn(entry, Assign(Y, Use(X), "k"), {"k": _nt({X: INT, Y: INT})})
	assert _kind(fn) is ErrorKind.DOUBLE_INIT


def test_assign_moves_linear_value():
	entry = _nt({X: BOX, Y: uninit(8)})
	node = Assign(Y, Use(X), "k")
	_check(_fn(entry, node, {"k": _nt({X: uninit(8), Y: BOX})}))
	# Successor claiming the source is still initialized duplicates the value.
	fn = _fn(entry, node, {"k": _nt({X: BOX, Y: BOX})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


def test_use_of_moved_value():
	entry = _nt({X: uninit(8), Y: uninit(8)})
	fn = _fn(entry, Assign(Y, Use(X), "k"), {"k": _nt({X: uninit(8), Y: BOX})})
	assert _kind(fn) is ErrorKind.USE_AFTER_MOVE


def test_constant_type_must_only_mention_active_lifetimes():
	entry = _nt({Y: uninit(8)}, lifetimes=(STATIC, A))
	_check(_fn(entry, Assign(Y, Const(_ref(A)), "k"), {"k": _nt({Y: _ref(A)}, lifetimes=(STATIC, A))}))
	node = Assign(Y, Const(_ref(Lifetime("gone"))), "k")
	fn = _fn(entry, node, {"k": _nt({Y: _ref(A)}, lifetimes=(STATIC, A))})
	assert _kind(fn) is ErrorKind.DANGLING_LIFETIME


def test_operand_threading_moves_left_to_right():
	entry = _nt({X: INT, Y: uninit(8)})
	node = Assign(Y, BinaryOp("+", Use(X), Use(X)), "k")
	# Int is Copy: reading it twice in one expression is fine.
	_check(_fn(entry, node, {"k": _nt({X: INT, Y: INT})}))


def test_constant_of_uninit_type_is_rejected():
	entry = _nt({Y: uninit(8)})
	fn = _fn(entry, Assign(Y, Const(uninit(8)), "k"), {"k": _nt({Y: uninit(8)})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


def test_successor_lifetimes_must_match():
	entry = _nt({X: INT, Y: uninit(8)}, lifetimes=(STATIC, A))
	fn = _fn(entry, Assign(Y, Use(X), "k"), {"k": _nt({X: INT, Y: INT})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


def test_successor_may_require_fewer_obligations():
	facts = (LifetimeOutlives(A, B),)
	entry = _nt({X: INT, Y: uninit(8)}, lifetimes=(STATIC, A, B), bounds=facts)
	node = Assign(Y, Use(X), "k")
	_check(_fn(entry, node, {"k": _nt({X: INT, Y: INT}, lifetimes=(STATIC, A, B))}))
	entry = _nt({X: INT, Y: uninit(8)}, lifetimes=(STATIC, A, B))
	fn = _fn(entry, node, {"k": _nt({X: INT, Y: INT}, lifetimes=(STATIC, A, B), bounds=facts)})
	assert _kind(fn) is ErrorKind.OBLIGATION_UNPROVED


def test_jump_to_undefined_label_is_malformed():
	entry = _nt({X: INT, Y: uninit(8)})
	fn = _fn(entry, Assign(Y, Use(X), "nowhere"))
	assert _kind(fn) is ErrorKind.MALFORMED_CONTEXT


# --- Call ---------------------------------------------------------------------


def _call_entry(bounds=(LifetimeOutlives(A, B),), lifetimes=(STATIC, A, B)):
	return _nt({R: _ref(A), Q: uninit(8)}, lifetimes=lifetimes, bounds=bounds)


def _call_next(bounds=(), lifetimes=(STATIC, A, B)):
	return _nt({R: uninit(8), Q: _ref(B)}, lifetimes=lifetimes, bounds=bounds)


def test_generic_call_with_entailed_obligation():
	node = Call(Q, "pick", (Use(R),), "k", lifetime_args=(A, B))
	_check(_fn(_call_entry(), node, {"k": _call_next()}))


def test_removing_supporting_fact_flips_call_to_obligation_unproved():
	node = Call(Q, "pick", (Use(R),), "k", lifetime_args=(A, B))
	fn = _fn(_call_entry(bounds=()), node, {"k": _call_next()})
	assert _kind(fn) is ErrorKind.OBLIGATION_UNPROVED


def test_obligation_derivable_by_transitivity():
	c = Lifetime("c")
	facts = (LifetimeOutlives(A, c), LifetimeOutlives(c, B))
	node = Call(Q, "pick", (Use(R),), "k", lifetime_args=(A, B))
	lifetimes = (STATIC, A, B, c)
	fn = _fn(_call_entry(bounds=facts, lifetimes=lifetimes), node, {"k": _call_next(lifetimes=lifetimes)})
	_check(fn)


def test_inactive_lifetime_argument_is_dangling():
	node = Call(Q, "pick", (Use(R),), "k", lifetime_args=(A, Lifetime("gone")))
	fn = _fn(_call_entry(), node, {"k": _call_next()})
	assert _kind(fn) is ErrorKind.DANGLING_LIFETIME


def test_type_argument_with_inactive_lifetime_is_dangling():
	node = Call(Q, "dup", (Use(R),), "k", type_args=(_ref(Lifetime("gone")),))
	fn = _fn(_call_entry(), node, {"k": _nt({R: uninit(8), Q: _ref(Lifetime("gone"))})})
	assert _kind(fn) is ErrorKind.DANGLING_LIFETIME


def test_call_arity_mismatch():
	node = Call(Q, "pick", (), "k", lifetime_args=(A, B))
	assert _kind(_fn(_call_entry(), node, {"k": _call_next()})) is ErrorKind.TYPE_MISMATCH
	node = Call(Q, "pick", (Use(R),), "k", lifetime_args=(A,))
	assert _kind(_fn(_call_entry(), node, {"k": _call_next()})) is ErrorKind.TYPE_MISMATCH


def test_argument_must_be_subtype_of_parameter():
	entry = _nt({X: BOOL, Y: uninit(8)})
	fn = _fn(entry, Call(Y, "make_box", (Use(X),), "k"), {"k": _nt({X: BOOL, Y: BOX})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


def test_unknown_callee_is_unresolved():
	entry = _nt({Y: uninit(8)})
	fn = _fn(entry, Call(Y, "nope", (), "k"), {"k": _nt({Y: INT})})
	assert _kind(fn) is ErrorKind.UNRESOLVED_TRAIT_BOUND


def test_instantiated_trait_bound_is_looked_up():
	entry = _nt({X: INT, Y: uninit(8)})
	node = Call(Y, "dup", (Use(X),), "k", type_args=(INT,))
	_check(_fn(entry, node, {"k": _nt({X: INT, Y: INT})}))
	entry = _nt({X: BOX, Y: uninit(8)})
	node = Call(Y, "dup", (Use(X),), "k", type_args=(BOX,))
	fn = _fn(entry, node, {"k": _nt({X: uninit(8), Y: BOX})})
	assert _kind(fn) is ErrorKind.UNRESOLVED_TRAIT_BOUND


def test_type_argument_size_must_match_declared_size():
	entry = _nt({X: BOOL, Y: uninit(1)})
	node = Call(Y, "dup", (Use(X),), "k", type_args=(BOOL,))
	fn = _fn(entry, node, {"k": _nt({X: BOOL, Y: BOOL})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


def test_call_to_non_returning_function_reaches_dead_code():
	entry = _nt({X: uninit(8)})
	node = Call(X, "abort", (), "dead")
	fn = _fn(entry, node, {"dead": _nt({X: ABSURD})})
	_check(fn)
	_check(fn, "dead")


# --- If -------------------------------------------------------------------------


def test_if_checks_both_successors_against_one_context():
	entry = _nt({C: BOOL})
	node = If(Use(C), "yes", "no")
	_check(_fn(entry, node, {"yes": _nt({C: BOOL}), "no": _nt({C: BOOL})}))
	fn = _fn(entry, node, {"yes": _nt({C: BOOL}), "no": _nt({C: uninit(1)})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


def test_if_branches_may_each_weaken_the_context():
	entry = _nt({C: BOOL, X: CIRCLE})
	node = If(Use(C), "yes", "no")
	_check(_fn(entry, node, {"yes": _nt({C: BOOL, X: SHAPE}), "no": _nt({C: BOOL, X: CIRCLE})}))


def test_if_condition_must_be_bool():
	entry = _nt({X: INT})
	fn = _fn(entry, If(Use(X), "yes", "no"), {"yes": _nt({X: INT}), "no": _nt({X: INT})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


# --- Switch ---------------------------------------------------------------------


def _switch_fn(arms, successors):
	entry = _nt({X: SHAPE})
	return _fn(entry, Switch(X, SHAPE, tuple(SwitchArm(ty, label) for ty, label in arms)), successors)


def test_exhaustive_switch_narrows_each_branch():
	arms = [(CIRCLE, "k1"), (SQUARE, "k2"), (TRI, "k3")]
	successors = {"k1": _nt({X: CIRCLE}), "k2": _nt({X: SQUARE}), "k3": _nt({X: TRI})}
	_check(_switch_fn(arms, successors))


def test_removing_a_branch_is_non_exhaustive():
	arms = [(CIRCLE, "k1"), (SQUARE, "k2")]
	successors = {"k1": _nt({X: CIRCLE}), "k2": _nt({X: SQUARE})}
	fn = _switch_fn(arms, successors)
	with pytest.raises(VerifyError) as exc:
		_check(fn)
	assert exc.value.kind is ErrorKind.NON_EXHAUSTIVE_SWITCH
	assert "Tri" in exc.value.diagnostic.message


def test_catch_all_branch_covers_remaining_variants():
	arms = [(CIRCLE, "k1"), (SHAPE, "k2")]
	successors = {"k1": _nt({X: CIRCLE}), "k2": _nt({X: SHAPE})}
	_check(_switch_fn(arms, successors))


def test_branch_successor_must_accept_narrowed_type():
	arms = [(CIRCLE, "k1"), (SQUARE, "k2"), (TRI, "k3")]
	successors = {"k1": _nt({X: SQUARE}), "k2": _nt({X: SQUARE}), "k3": _nt({X: TRI})}
	assert _kind(_switch_fn(arms, successors)) is ErrorKind.TYPE_MISMATCH


def test_branch_type_outside_static_type_is_rejected():
	arms = [(CIRCLE, "k1"), (SQUARE, "k2"), (TRI, "k3"), (INT, "k4")]
	successors = {"k1": _nt({X: CIRCLE}), "k2": _nt({X: SQUARE}), "k3": _nt({X: TRI}), "k4": _nt({X: INT})}
	assert _kind(_switch_fn(arms, successors)) is ErrorKind.TYPE_MISMATCH


def test_switch_on_narrowed_subject_makes_disjoint_branches_unreachable():
	entry = _nt({X: CIRCLE})
	node = Switch(X, SHAPE, (SwitchArm(CIRCLE, "k1"), SwitchArm(SQUARE, "k2"), SwitchArm(TRI, "k3")))
	# Only the Circle branch can be taken; the others receive `!`.
	successors = {"k1": _nt({X: CIRCLE}), "k2": _nt({X: BOX}), "k3": _nt({X: BOX})}
	_check(_fn(entry, node, successors))
	# A Square value never reaches k1 or k3 either.
	entry = _nt({X: SQUARE})
	successors = {"k1": _nt({X: BOX}), "k2": _nt({X: SQUARE}), "k3": _nt({X: BOX})}
	_check(_fn(entry, node, successors))
	successors = {"k1": _nt({X: BOX}), "k2": _nt({X: CIRCLE}), "k3": _nt({X: BOX})}
	assert _kind(_fn(entry, node, successors)) is ErrorKind.TYPE_MISMATCH


def test_switch_on_uninit_is_use_after_move():
	entry = _nt({X: uninit(8)})
	fn = _fn(entry, Switch(X, SHAPE, (SwitchArm(SHAPE, "k"),)), {"k": _nt({X: SHAPE})})
	assert _kind(fn) is ErrorKind.USE_AFTER_MOVE


# --- Drop -----------------------------------------------------------------------


def test_drop_copy_value():
	entry = _nt({X: INT})
	_check(_fn(entry, Drop(X, "k"), {"k": _nt({X: UNINIT_ANY})}))


def test_drop_linear_value_is_rejected():
	entry = _nt({X: BOX})
	fn = _fn(entry, Drop(X, "k"), {"k": _nt({X: UNINIT_ANY})})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


# --- LifetimeBegin / LifetimeEnd ------------------------------------------------


def test_begin_extends_lifetimes_and_assumptions():
	entry = _nt({X: INT}, lifetimes=(STATIC, A))
	succ = _nt({X: INT}, lifetimes=(STATIC, A, B), bounds=(LifetimeOutlives(A, B),))
	_check(_fn(entry, LifetimeBegin(B, "k"), {"k": succ}))


def test_begin_successor_must_list_new_lifetime():
	entry = _nt({X: INT}, lifetimes=(STATIC, A))
	fn = _fn(entry, LifetimeBegin(B, "k"), {"k": _nt({X: INT}, lifetimes=(STATIC, A))})
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH


def test_end_with_live_reference_is_dangling():
	entry = _nt({R: _ref(B)}, lifetimes=(STATIC, B))
	fn = _fn(entry, LifetimeEnd(B, "k"), {"k": _nt({R: _ref(B)})})
	assert _kind(fn) is ErrorKind.DANGLING_LIFETIME


def test_end_after_reference_is_gone():
	entry = _nt({R: uninit(8)}, lifetimes=(STATIC, B))
	_check(_fn(entry, LifetimeEnd(B, "k"), {"k": _nt({R: uninit(8)})}))


def test_end_out_of_nesting_order_needs_outlives_fact():
	entry = _nt({X: INT}, lifetimes=(STATIC, A, B))
	succ = _nt({X: INT}, lifetimes=(STATIC, B))
	fn = _fn(entry, LifetimeEnd(A, "k"), {"k": succ})
	assert _kind(fn) is ErrorKind.OBLIGATION_UNPROVED
	entry = _nt({X: INT}, lifetimes=(STATIC, A, B), bounds=(LifetimeOutlives(B, A),))
	_check(_fn(entry, LifetimeEnd(A, "k"), {"k": succ}))


# --- DeadCode -------------------------------------------------------------------


def test_dead_code_requires_absurd_location():
	fn = _fn(_nt({X: INT}), DeadCode())
	assert _kind(fn) is ErrorKind.TYPE_MISMATCH
	_check(_fn(_nt({X: ABSURD}), DeadCode()))


def test_absurd_incoming_context_accepts_any_node():
	entry = _nt({X: ABSURD, Y: INT})
	_check(_fn(entry, Assign(Y, Use(X), "k"), {"k": _nt({X: BOX, Y: BOX})}))


# --- whole-table checks -----------------------------------------------------------


def test_all_errors_reports_each_failing_label():
	sig = FnSignature("f", (), UNIT)
	labels = {
		"entry": LabeledNode(_nt({RETURN_SLOT: uninit(0), X: INT}), Drop(X, "k")),
		"k": LabeledNode(_nt({RETURN_SLOT: uninit(0), X: uninit(8)}), DeadCode()),
		"m": LabeledNode(_nt({RETURN_SLOT: uninit(0), X: uninit(8)}), Drop(X, "k")),
	}
	fn = Function(sig, ("x",), labels)
	verifier = CfgVerifier(fn, STORE, exit_node_type(fn))
	first = verifier.check_all()
	assert [d.label for d in first] == ["k"]
	every = verifier.check_all(all_errors=True)
	assert [d.label for d in every] == ["k", "m"]
	assert all(d.function == "f" for d in every)
