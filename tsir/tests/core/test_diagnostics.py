# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from tsir.core.diagnostics import Diagnostic, ErrorKind, VerifyError, fail
from tsir.core.span import Span


def test_error_kind_titles_are_camel_case():
	assert ErrorKind.USE_AFTER_MOVE.title == "UseAfterMove"
	assert ErrorKind.NON_EXHAUSTIVE_SWITCH.title == "NonExhaustiveSwitch"
	assert ErrorKind.OBLIGATION_UNPROVED.value == "E_OBLIGATION_UNPROVED"


def test_fail_builds_verify_phase_diagnostic():
	err = fail(ErrorKind.DOUBLE_INIT, "x is already initialized", rule="assign", expected="uninit", actual="Int", locations=["x"])
	assert isinstance(err, VerifyError)
	assert err.kind is ErrorKind.DOUBLE_INIT
	diag = err.diagnostic
	assert diag.phase == "verify"
	assert diag.code == "E_DOUBLE_INIT"
	assert diag.locations == ["x"]
	assert fail(ErrorKind.PARSE, "bad").diagnostic.phase == "parser"


def test_at_fills_only_missing_fields():
	err = fail(ErrorKind.TYPE_MISMATCH, "boom", label="inner")
	err.at(label="outer", function="f", span=Span(file="a.tsir", line=3, column=1))
	assert err.diagnostic.label == "inner"
	assert err.diagnostic.function == "f"
	assert err.diagnostic.span.line == 3
	err.at(span=Span(file="b.tsir", line=9, column=9))
	assert err.diagnostic.span.file == "a.tsir"


def test_render_names_function_label_and_rule():
	diag = Diagnostic(
		message="use of x while it is uninitialized",
		code=ErrorKind.USE_AFTER_MOVE.value,
		function="f",
		label="bb1",
		rule="assign",
		expected="an initialized value",
		actual="uninit<8>",
		span=Span(file="m.tsir", line=4, column=2),
	)
	text = diag.render()
	first = text.splitlines()[0]
	assert first == "m.tsir:4:2: error: [f@bb1] assign: use of x while it is uninitialized (UseAfterMove)"
	assert "  expected: an initialized value" in text
	assert "  actual:   uninit<8>" in text


def test_unknown_span_renders_placeholders():
	assert str(Span()) == "<ir>:?:?"
	assert not Span().is_known()


def test_to_json_shape():
	diag = fail(ErrorKind.MALFORMED_CONTEXT, "missing", rule="shape", locations=["ret"]).diagnostic
	payload = diag.to_json()
	assert payload["code"] == "E_MALFORMED_CONTEXT"
	assert payload["rule"] == "shape"
	assert payload["locations"] == ["ret"]
	assert payload["line"] is None
	assert set(payload) >= {"phase", "message", "severity", "function", "label", "expected", "actual", "file", "column", "notes"}
