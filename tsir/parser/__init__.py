# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual IR entry points.

`parse_tsir` turns IR text into a Program: the declarations become the
program's ContextStore (optionally on top of the Int/Bool/Unit prelude) and
every `fn` with a body becomes a Function to verify. Anything that stops the
text from becoming a Program is raised as ParseError carrying a pinned
diagnostic, never as a raw lark exception.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lark.exceptions import UnexpectedInput

from tsir.context_store import ContextStore, prelude_declarations
from tsir.core.diagnostics import Diagnostic, ErrorKind, VerifyError
from tsir.core.span import Span
from tsir.ir_nodes import Program
from tsir.parser import parser as _parser

_log = logging.getLogger(__name__)


class ParseError(VerifyError):
	"""The IR text could not be read into a Program."""


def _parse_error(message: str, span: Span, *, code: str = ErrorKind.PARSE.value) -> ParseError:
	return ParseError(Diagnostic(message=message, code=code, phase="parser", span=span))


def parse_tsir(text: str, *, file: str | None = None, prelude: bool = True) -> Program:
	"""Parse IR text into a Program whose store holds the prelude plus the text's declarations."""
	try:
		module = _parser.parse_module(text, file=file)
	except _parser.IrBuildError as err:
		raise _parse_error(str(err), Span.from_loc(err.loc, file=file)) from err
	except UnexpectedInput as err:
		span = Span(
			file=file,
			line=getattr(err, "line", None),
			column=getattr(err, "column", None),
			raw=err,
		)
		raise _parse_error(str(err).strip().splitlines()[0], span) from err
	except VerifyError as err:
		# Contexts listing a location twice are rejected while being built.
		diag = err.diagnostic
		raise _parse_error(diag.message, Span(file=file), code=diag.code or ErrorKind.PARSE.value) from err

	decls = module.declarations
	if prelude:
		decls = prelude_declarations().merged(decls)
	try:
		store = ContextStore(decls)
	except VerifyError as err:
		diag = err.diagnostic
		span = diag.span if diag.span.is_known() else Span(file=file)
		raise _parse_error(diag.message, span, code=diag.code or ErrorKind.PARSE.value) from err

	functions = {}
	for fn in module.functions:
		functions[fn.name] = fn
	_log.debug("parsed %s: %d functions, %d types", file or "<ir>", len(functions), len(decls.types))
	return Program(store, functions)


def parse_tsir_file(path: Path | str, *, prelude: bool = True) -> Program:
	path = Path(path)
	return parse_tsir(path.read_text(), file=str(path), prelude=prelude)


__all__ = ["ParseError", "parse_tsir", "parse_tsir_file"]
