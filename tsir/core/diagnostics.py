# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Common diagnostic structure for the reader and the verifier.

A rejection names the label and rule that failed, the context the rule
expected, what it actually found, and the offending location(s). Checks raise
`VerifyError` carrying one Diagnostic; the function verifier catches it at the
function boundary so one rejected function never stops the others.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .span import Span


class ErrorKind(Enum):
	"""Rejection taxonomy; the value is the stable diagnostic code."""

	TYPE_MISMATCH = "E_TYPE_MISMATCH"
	USE_AFTER_MOVE = "E_USE_AFTER_MOVE"
	DOUBLE_INIT = "E_DOUBLE_INIT"
	DANGLING_LIFETIME = "E_DANGLING_LIFETIME"
	OBLIGATION_UNPROVED = "E_OBLIGATION_UNPROVED"
	NON_EXHAUSTIVE_SWITCH = "E_NON_EXHAUSTIVE_SWITCH"
	UNRESOLVED_TRAIT_BOUND = "E_UNRESOLVED_TRAIT_BOUND"
	MALFORMED_CONTEXT = "E_MALFORMED_CONTEXT"
	PARSE = "E_PARSE"

	@property
	def title(self) -> str:
		"""CamelCase name used in human-readable output (`UseAfterMove`)."""
		return "".join(part.capitalize() for part in self.name.split("_"))


@dataclass
class Diagnostic:
	"""Represents a verifier diagnostic (error/warning/etc.)."""

	message: str
	code: str | None = None
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)
	notes: list[str] = field(default_factory=list)
	function: str | None = None
	label: str | None = None
	rule: str | None = None
	expected: str | None = None
	actual: str | None = None
	locations: list[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	@property
	def kind(self) -> Optional[ErrorKind]:
		for kind in ErrorKind:
			if kind.value == self.code:
				return kind
		return None

	def render(self) -> str:
		"""Render as a single `file:line:col: error: [fn@label] rule: message` line."""
		where = ""
		if self.function is not None:
			where = self.function if self.label is None else f"{self.function}@{self.label}"
		elif self.label is not None:
			where = self.label
		prefix = f"[{where}] " if where else ""
		rule = f"{self.rule}: " if self.rule else ""
		kind = self.kind
		title = f" ({kind.title})" if kind is not None else ""
		line = f"{self.span}: {self.severity}: {prefix}{rule}{self.message}{title}"
		extra: List[str] = []
		if self.expected is not None:
			extra.append(f"  expected: {self.expected}")
		if self.actual is not None:
			extra.append(f"  actual:   {self.actual}")
		extra.extend(f"  note: {note}" for note in self.notes)
		return "\n".join([line, *extra])

	def to_json(self) -> dict:
		"""Render to a structured JSON-friendly dict."""
		return {
			"phase": self.phase,
			"code": self.code,
			"message": self.message,
			"severity": self.severity,
			"function": self.function,
			"label": self.label,
			"rule": self.rule,
			"expected": self.expected,
			"actual": self.actual,
			"locations": list(self.locations),
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"notes": list(self.notes),
		}


class VerifyError(Exception):
	"""Hard rejection raised by a typing rule; carries the diagnostic."""

	def __init__(self, diagnostic: Diagnostic) -> None:
		super().__init__(diagnostic.message)
		self.diagnostic = diagnostic

	@property
	def kind(self) -> Optional[ErrorKind]:
		return self.diagnostic.kind

	def at(self, *, label: str | None = None, function: str | None = None, span: Span | None = None) -> "VerifyError":
		"""Fill in where the failure happened unless an inner rule already did."""
		diag = self.diagnostic
		if diag.label is None and label is not None:
			diag.label = label
		if diag.function is None and function is not None:
			diag.function = function
		if span is not None and not diag.span.is_known():
			diag.span = span
		return self


def fail(
	kind: ErrorKind,
	message: str,
	*,
	rule: str | None = None,
	expected: object | None = None,
	actual: object | None = None,
	locations: list[object] | None = None,
	label: str | None = None,
	span: Span | None = None,
	notes: list[str] | None = None,
) -> VerifyError:
	"""Build a VerifyError; callers `raise fail(...)` so tracebacks point at the rule."""
	return VerifyError(
		Diagnostic(
			message=message,
			code=kind.value,
			phase="verify" if kind is not ErrorKind.PARSE else "parser",
			span=span or Span(),
			notes=list(notes or []),
			label=label,
			rule=rule,
			expected=None if expected is None else str(expected),
			actual=None if actual is None else str(actual),
			locations=[str(loc) for loc in (locations or [])],
		)
	)


__all__ = ["Diagnostic", "ErrorKind", "VerifyError", "fail"]
