# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Type model helpers: substitution, pattern matching, rendering.
"""

from __future__ import annotations

from tsir.core.type_subst import Subst, apply_subst, match_type
from tsir.core.types_core import (
	ABSURD,
	Lifetime,
	ParamType,
	UserType,
	lifetimes_in,
	mentions_lifetime,
	params_in,
	uninit,
)

INT = UserType("Int")
BOOL = UserType("Bool")
A = Lifetime("a")
B = Lifetime("b")


def test_apply_subst_replaces_type_params_and_lifetimes():
	ty = UserType("Ref", (ParamType("T"),), (A,))
	subst = Subst.from_params(("T",), (INT,), (A,), (B,))
	assert apply_subst(ty, subst) == UserType("Ref", (INT,), (B,))


def test_apply_subst_leaves_unbound_names_alone():
	subst = Subst.from_params(("T",), (INT,))
	assert apply_subst(ParamType("U"), subst) == ParamType("U")
	assert apply_subst(ABSURD, subst) == ABSURD
	assert apply_subst(uninit(8), subst) == uninit(8)


def test_empty_subst_is_identity():
	ty = UserType("Box", (ParamType("T"),))
	assert Subst().is_empty()
	assert apply_subst(ty, Subst()) is ty


def test_match_binds_pattern_variables_consistently():
	pattern = UserType("Pair", (ParamType("T"), ParamType("T")))
	binding = match_type(pattern, UserType("Pair", (INT, INT)), type_vars=("T",))
	assert binding is not None
	assert binding.types["T"] == INT
	assert match_type(pattern, UserType("Pair", (INT, BOOL)), type_vars=("T",)) is None


def test_match_binds_lifetime_variables():
	pattern = UserType("Ref", (ParamType("T"),), (A,))
	binding = match_type(pattern, UserType("Ref", (INT,), (B,)), type_vars=("T",), lifetime_vars=(A,))
	assert binding is not None
	assert binding.lifetimes[A] == B


def test_match_treats_non_variables_literally():
	assert match_type(ParamType("T"), INT) is None
	assert match_type(UserType("Ref", (INT,), (A,)), UserType("Ref", (INT,), (B,))) is None
	assert match_type(INT, INT) == Subst()


def test_lifetime_and_param_queries():
	ty = UserType("Ref", (UserType("Ref", (ParamType("T"),), (B,)),), (A,))
	assert lifetimes_in(ty) == frozenset({A, B})
	assert params_in(ty) == frozenset({"T"})
	assert mentions_lifetime(ty, B)
	assert not mentions_lifetime(INT, A)


def test_rendering_puts_lifetimes_first():
	assert str(UserType("Ref", (INT,), (A,))) == "Ref<'a, Int>"
	assert str(uninit(8)) == "uninit<8>"
	assert str(uninit(None)) == "uninit<_>"
	assert str(ABSURD) == "!"
