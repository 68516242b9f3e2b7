# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual IR reader: lark parse tree -> declarations + functions.

The grammar only fixes the shape; everything that depends on what a name
refers to (type parameter or user type, parameter or local or static) is
decided here while walking the tree.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple

from lark import Lark, Token, Tree

from tsir.context_store import (
	Declarations,
	FnSignature,
	ImplFact,
	PrimOpSig,
	StaticDecl,
	TraitBound,
	TypeDecl,
	TypeParamDecl,
)
from tsir.core.span import Span
from tsir.core.types_core import ABSURD, UNINIT_ANY, Lifetime, ParamType, Type, UninitType, UserType
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
	Node,
	NodeType,
	Operand,
	RValue,
	Switch,
	SwitchArm,
	UnaryOp,
	Use,
)
from tsir.location_ctx import RETURN_SLOT, Location, LocationContext, local, param, static
from tsir.obligations import LifetimeOutlives, OutlivesFact, TypeOutlives

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)

_TYPE_RULES = frozenset({"uninit_type", "uninit_any", "absurd_type", "named_type"})


class IrBuildError(ValueError):
	"""
	User-facing error for IR text that parses but does not make sense
	(unknown location name, trait bound inside a node type, ...).

	The package entry point converts this into a parser-phase diagnostic.
	"""

	def __init__(self, message: str, *, loc: object | None) -> None:
		super().__init__(message)
		self.loc = loc


@dataclass
class ParsedModule:
	"""Everything one IR text declares, before a store is built from it."""

	declarations: Declarations
	functions: List[Function] = field(default_factory=list)


def parse_module(source: str, *, file: str | None = None) -> ParsedModule:
	tree = _PARSER.parse(source)
	return _ModuleBuilder(file).build(tree)


def _name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		data = node.data
		if isinstance(data, Token):
			return data.value
		return data
	if isinstance(node, Token):
		return node.type
	return str(node)


def _trees(tree: Tree, rule: str | None = None) -> List[Tree]:
	return [c for c in tree.children if isinstance(c, Tree) and (rule is None or _name(c) == rule)]


def _first_tree(tree: Tree, rule: str) -> Optional[Tree]:
	return next((c for c in tree.children if isinstance(c, Tree) and _name(c) == rule), None)


def _tokens(tree: Tree, kind: str | None = None) -> List[Token]:
	return [c for c in tree.children if isinstance(c, Token) and (kind is None or c.type == kind)]


def _lifetime(tok: Token) -> Lifetime:
	return Lifetime(tok.value[1:])


def _decode_string_token(tok: Token) -> str:
	"""Decode a STRING token (Python-style escapes)."""
	return codecs.decode(tok.value[1:-1], "unicode_escape")


@dataclass
class _FnScope:
	"""Names visible inside one function body."""

	params: FrozenSet[str]
	locals: FrozenSet[str]
	statics: FrozenSet[str]
	type_vars: FrozenSet[str]

	def resolve(self, tok: Token) -> Location:
		name = tok.value
		if name == RETURN_SLOT.name:
			return RETURN_SLOT
		if name in self.params:
			return param(name)
		if name in self.locals:
			return local(name)
		if name in self.statics:
			return static(name)
		raise IrBuildError(f"unknown location '{name}'", loc=tok)


class _ModuleBuilder:
	def __init__(self, file: str | None) -> None:
		self.file = file

	def span(self, tree: Tree | Token) -> Span:
		if isinstance(tree, Tree):
			return Span.from_loc(tree.meta, file=self.file)
		return Span.from_loc(tree, file=self.file)

	# --- items ------------------------------------------------------------

	def build(self, tree: Tree) -> ParsedModule:
		types: List[TypeDecl] = []
		impls: List[ImplFact] = []
		prim_ops: List[PrimOpSig] = []
		statics: List[StaticDecl] = []
		signatures: List[FnSignature] = []
		bodies: List[Tuple[FnSignature, Tree]] = []
		for child in _trees(tree):
			kind = _name(child)
			if kind == "type_decl":
				types.append(self.type_decl(child))
			elif kind == "impl_decl":
				impls.append(self.impl_decl(child))
			elif kind == "prim_decl":
				prim_ops.append(self.prim_decl(child))
			elif kind == "static_decl":
				statics.append(self.static_decl(child))
			elif kind == "fn_decl":
				sig, body = self.fn_decl(child)
				signatures.append(sig)
				if body is not None:
					bodies.append((sig, body))
			else:
				raise AssertionError(f"unexpected item {kind}")
		static_names = frozenset(s.name for s in statics)
		functions = [self.function(sig, body, static_names) for sig, body in bodies]
		decls = Declarations(
			types=tuple(types),
			impls=tuple(impls),
			prim_ops=tuple(prim_ops),
			statics=tuple(statics),
			signatures=tuple(signatures),
		)
		return ParsedModule(decls, functions)

	def type_decl(self, tree: Tree) -> TypeDecl:
		name_tok = _tokens(tree, "NAME")[0]
		size_tok = _tokens(tree, "INT")[0]
		lifetimes, tparams = self.generic_params(_first_tree(tree, "generic_params"))
		tvars = frozenset(tp.name for tp in tparams)
		variant_of: Optional[UserType] = None
		clause = _first_tree(tree, "variant_clause")
		if clause is not None:
			parent = self.type_expr(_trees(clause)[0], tvars)
			if not isinstance(parent, UserType):
				raise IrBuildError(f"'{name_tok.value}' can only be a variant of a user type", loc=clause.meta)
			variant_of = parent
		if any(tp.size is not None for tp in tparams):
			raise IrBuildError("type declaration parameters take no size", loc=tree.meta)
		return TypeDecl(
			name=name_tok.value,
			size=int(size_tok.value),
			type_params=tuple(tp.name for tp in tparams),
			lifetime_params=lifetimes,
			variant_of=variant_of,
			span=self.span(tree),
		)

	def impl_decl(self, tree: Tree) -> ImplFact:
		lifetimes, tparams = self.generic_params(_first_tree(tree, "generic_params"))
		tvars = frozenset(tp.name for tp in tparams)
		trait_tok = _tokens(tree, "NAME")[0]
		target = self.type_expr(next(c for c in _trees(tree) if _name(c) in _TYPE_RULES), tvars)
		trait_bounds, outlives = self.where_clause(_first_tree(tree, "where_clause"), tvars)
		if outlives:
			raise IrBuildError("impl where-clauses may only name trait bounds", loc=tree.meta)
		return ImplFact(
			trait=trait_tok.value,
			target=target,
			type_vars=tuple(tp.name for tp in tparams),
			lifetime_vars=lifetimes,
			requires=trait_bounds,
			span=self.span(tree),
		)

	def prim_decl(self, tree: Tree) -> PrimOpSig:
		op_tree = _first_tree(tree, "prim_op")
		assert op_tree is not None
		op = _tokens(op_tree)[0].value
		type_list = _first_tree(tree, "type_list")
		operands = tuple(self.type_expr(t, frozenset()) for t in _trees(type_list)) if type_list is not None else ()
		result = self.type_expr(next(c for c in _trees(tree) if _name(c) in _TYPE_RULES), frozenset())
		return PrimOpSig(op, operands, result)

	def static_decl(self, tree: Tree) -> StaticDecl:
		name_tok = _tokens(tree, "NAME")[0]
		ty = self.type_expr(_trees(tree)[0], frozenset())
		return StaticDecl(name_tok.value, ty, span=self.span(tree))

	def fn_decl(self, tree: Tree) -> Tuple[FnSignature, Optional[Tree]]:
		name_tok = _tokens(tree, "NAME")[0]
		lifetimes, tparams = self.generic_params(_first_tree(tree, "generic_params"))
		tvars = frozenset(tp.name for tp in tparams)
		params: List[Tuple[str, Type]] = []
		params_tree = _first_tree(tree, "params")
		if params_tree is not None:
			for p in _trees(params_tree, "param"):
				params.append((_tokens(p, "NAME")[0].value, self.type_expr(_trees(p)[0], tvars)))
		ret = self.type_expr(next(c for c in _trees(tree) if _name(c) in _TYPE_RULES), tvars)
		trait_bounds, outlives = self.where_clause(_first_tree(tree, "where_clause"), tvars)
		sig = FnSignature(
			name=name_tok.value,
			params=tuple(params),
			return_type=ret,
			lifetime_params=lifetimes,
			type_params=tparams,
			trait_bounds=trait_bounds,
			outlives_bounds=outlives,
			span=self.span(tree),
		)
		return sig, _first_tree(tree, "body")

	def generic_params(self, tree: Tree | None) -> Tuple[Tuple[Lifetime, ...], Tuple[TypeParamDecl, ...]]:
		if tree is None:
			return (), ()
		lifetimes: List[Lifetime] = []
		tparams: List[TypeParamDecl] = []
		for gp in _trees(tree):
			if _name(gp) == "lifetime_param":
				lifetimes.append(_lifetime(_tokens(gp, "LIFETIME")[0]))
			else:
				size = _tokens(gp, "INT")
				tparams.append(TypeParamDecl(_tokens(gp, "NAME")[0].value, int(size[0].value) if size else None))
		return tuple(lifetimes), tuple(tparams)

	def where_clause(
		self, tree: Tree | None, tvars: FrozenSet[str]
	) -> Tuple[Tuple[TraitBound, ...], Tuple[OutlivesFact, ...]]:
		if tree is None:
			return (), ()
		traits: List[TraitBound] = []
		outlives: List[OutlivesFact] = []
		for b in _trees(tree):
			bound = self.bound(b, tvars)
			if isinstance(bound, TraitBound):
				traits.append(bound)
			else:
				outlives.append(bound)
		return tuple(traits), tuple(outlives)

	def bound(self, tree: Tree, tvars: FrozenSet[str]) -> TraitBound | OutlivesFact:
		kind = _name(tree)
		if kind == "lifetime_bound":
			longer, shorter = _tokens(tree, "LIFETIME")
			return LifetimeOutlives(_lifetime(longer), _lifetime(shorter))
		subject = self.type_expr(_trees(tree)[0], tvars)
		if kind == "type_outlives_bound":
			return TypeOutlives(subject, _lifetime(_tokens(tree, "LIFETIME")[0]))
		if kind == "trait_bound":
			return TraitBound(subject, _tokens(tree, "NAME")[0].value)
		raise AssertionError(f"unexpected bound {kind}")

	# --- types --------------------------------------------------------------

	def type_expr(self, tree: Tree, tvars: FrozenSet[str]) -> Type:
		kind = _name(tree)
		if kind == "uninit_type":
			return UninitType(int(_tokens(tree, "INT")[0].value))
		if kind == "uninit_any":
			return UNINIT_ANY
		if kind == "absurd_type":
			return ABSURD
		if kind == "named_type":
			name_tok = _tokens(tree, "NAME")[0]
			args_tree = _first_tree(tree, "type_args")
			if args_tree is None:
				if name_tok.value in tvars:
					return ParamType(name_tok.value)
				return UserType(name_tok.value)
			if name_tok.value in tvars:
				raise IrBuildError(f"type parameter '{name_tok.value}' takes no arguments", loc=name_tok)
			lifetimes, types = self.type_args(args_tree, tvars)
			return UserType(name_tok.value, types, lifetimes)
		raise AssertionError(f"unexpected type rule {kind}")

	def type_args(self, tree: Tree, tvars: FrozenSet[str]) -> Tuple[Tuple[Lifetime, ...], Tuple[Type, ...]]:
		"""Split mixed `<'a, T>` arguments by kind, keeping order within each kind."""
		lifetimes: List[Lifetime] = []
		types: List[Type] = []
		for arg in tree.children:
			if isinstance(arg, Token):
				if arg.type == "LIFETIME":
					lifetimes.append(_lifetime(arg))
				continue
			types.append(self.type_expr(arg, tvars))
		return tuple(lifetimes), tuple(types)

	# --- function bodies ----------------------------------------------------

	def function(self, sig: FnSignature, body: Tree, statics: FrozenSet[str]) -> Function:
		locals_tree = _first_tree(body, "locals_decl")
		local_names = tuple(t.value for t in _tokens(locals_tree, "NAME")) if locals_tree is not None else ()
		scope = _FnScope(
			params=frozenset(name for name, _ty in sig.params),
			locals=frozenset(local_names),
			statics=statics,
			type_vars=frozenset(sig.type_param_names),
		)
		labels: Dict[str, LabeledNode] = {}
		for labeled in _trees(body, "labeled_node"):
			label_tok = _tokens(labeled, "NAME")[0]
			if label_tok.value in labels:
				raise IrBuildError(f"label '{label_tok.value}' defined twice in '{sig.name}'", loc=label_tok)
			node_type_tree, node_tree = _trees(labeled)
			labels[label_tok.value] = LabeledNode(
				self.node_type(node_type_tree, scope),
				self.node(node_tree, scope, self.span(labeled)),
			)
		return Function(sig, local_names, labels, span=sig.span)

	def node_type(self, tree: Tree, scope: _FnScope) -> NodeType:
		entries: List[Tuple[Location, Type]] = []
		lifetimes: List[Lifetime] = []
		bounds: List[OutlivesFact] = []
		for section in _trees(tree):
			kind = _name(section)
			if kind == "loc_entries":
				for entry in _trees(section, "loc_entry"):
					loc = scope.resolve(_tokens(entry, "NAME")[0])
					entries.append((loc, self.type_expr(_trees(entry)[0], scope.type_vars)))
			elif kind == "lifetime_list":
				lifetimes.extend(_lifetime(t) for t in _tokens(section, "LIFETIME"))
			elif kind == "bound_list":
				for b in _trees(section):
					bound = self.bound(b, scope.type_vars)
					if isinstance(bound, TraitBound):
						raise IrBuildError(f"trait bound '{bound}' cannot appear in a node type", loc=b.meta)
					bounds.append(bound)
		return NodeType(LocationContext(entries), frozenset(lifetimes), frozenset(bounds))

	def node(self, tree: Tree, scope: _FnScope, span: Span) -> Node:
		kind = _name(tree)
		names = _tokens(tree, "NAME")
		if kind == "assign_node":
			return Assign(scope.resolve(names[0]), self.rvalue(_trees(tree)[0], scope), names[-1].value, span=span)
		if kind == "call_node":
			args_tree = _first_tree(tree, "type_args")
			lifetimes, types = self.type_args(args_tree, scope.type_vars) if args_tree is not None else ((), ())
			ops_tree = _first_tree(tree, "operands")
			args = tuple(self.operand(o, scope) for o in _trees(ops_tree)) if ops_tree is not None else ()
			return Call(
				scope.resolve(names[0]),
				names[1].value,
				args,
				names[-1].value,
				type_args=types,
				lifetime_args=lifetimes,
				span=span,
			)
		if kind == "if_node":
			return If(self.operand(_trees(tree)[0], scope), names[0].value, names[1].value, span=span)
		if kind == "switch_node":
			static_type = self.type_expr(next(c for c in _trees(tree) if _name(c) in _TYPE_RULES), scope.type_vars)
			arms = tuple(
				SwitchArm(self.type_expr(_trees(arm)[0], scope.type_vars), _tokens(arm, "NAME")[0].value)
				for arm in _trees(tree, "switch_arm")
			)
			return Switch(scope.resolve(names[0]), static_type, arms, span=span)
		if kind == "drop_node":
			return Drop(scope.resolve(names[0]), names[1].value, span=span)
		if kind == "begin_node":
			return LifetimeBegin(_lifetime(_tokens(tree, "LIFETIME")[0]), names[0].value, span=span)
		if kind == "end_node":
			return LifetimeEnd(_lifetime(_tokens(tree, "LIFETIME")[0]), names[0].value, span=span)
		if kind == "dead_node":
			return DeadCode(span=span)
		raise AssertionError(f"unexpected node rule {kind}")

	def rvalue(self, tree: Tree, scope: _FnScope) -> RValue:
		kind = _name(tree)
		if kind == "unary":
			op_tree, operand = _trees(tree)
			return UnaryOp(_tokens(op_tree)[0].value, self.operand(operand, scope))
		if kind == "binary":
			left, op_tree, right = _trees(tree)
			return BinaryOp(_tokens(op_tree)[0].value, self.operand(left, scope), self.operand(right, scope))
		return self.operand(tree, scope)

	def operand(self, tree: Tree, scope: _FnScope) -> Operand:
		kind = _name(tree)
		if kind == "use":
			return Use(scope.resolve(_tokens(tree, "NAME")[0]))
		if kind == "const":
			ty = self.type_expr(next(c for c in _trees(tree) if _name(c) in _TYPE_RULES), scope.type_vars)
			literal = _first_tree(tree, "literal")
			return Const(ty, _literal_value(literal) if literal is not None else None)
		raise AssertionError(f"unexpected operand rule {kind}")


def _literal_value(tree: Tree) -> object:
	tok = _tokens(tree)[0]
	if tok.type == "INT":
		return int(tok.value)
	if tok.type == "STRING":
		return _decode_string_token(tok)
	return tok.value == "true"


__all__ = ["IrBuildError", "ParsedModule", "parse_module"]
