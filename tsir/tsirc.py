# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
tsirc: read textual IR files and verify every function in them.

Each file is its own program (own store, own functions). A file that cannot
be read is reported and skipped; the remaining files are still verified.
Exit code is 0 only when every file parsed and every function is well-typed.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from tsir.config import VerifierConfig
from tsir.core.diagnostics import Diagnostic
from tsir.fn_verifier import FunctionResult, verify_program
from tsir.parser import ParseError, parse_tsir_file

_log = logging.getLogger(__name__)


def _function_to_json(path: Path, res: FunctionResult) -> dict:
	return {
		"file": str(path),
		"name": res.name,
		"ok": res.ok,
		"judgment": res.judgment(),
	}


def main(argv: list[str] | None = None) -> int:
	"""
	Parse each IR file, verify its functions, and report.

	With --json, prints one object `{exit_code, functions, diagnostics}`;
	otherwise prints one judgment line per function on stdout and
	human-readable diagnostics on stderr.
	"""
	parser = argparse.ArgumentParser(prog="tsirc", description="typestate IR verifier")
	parser.add_argument("source", type=Path, nargs="+", help="Path(s) to IR file(s)")
	parser.add_argument(
		"--json",
		action="store_true",
		help="Emit results and diagnostics as JSON",
	)
	parser.add_argument(
		"-j",
		"--jobs",
		type=int,
		default=1,
		help="Verify up to N functions concurrently (default 1)",
	)
	parser.add_argument(
		"--all-errors",
		action="store_true",
		help="Report one diagnostic per failing label instead of stopping at the first",
	)
	parser.add_argument(
		"--prelude",
		dest="prelude",
		action="store_true",
		default=True,
		help="Declare Int/Bool/Unit and their primitive operations (default)",
	)
	parser.add_argument(
		"--no-prelude",
		dest="prelude",
		action="store_false",
		help="Start from an empty store; the file declares everything it uses",
	)
	parser.add_argument(
		"--log-level",
		default="WARNING",
		choices=["DEBUG", "INFO", "WARNING", "ERROR"],
		help="Logging level for verifier internals (default WARNING)",
	)
	args = parser.parse_args(argv)

	logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
	if args.jobs < 1:
		parser.error("--jobs must be at least 1")
	config = VerifierConfig(jobs=args.jobs, all_errors=args.all_errors)

	functions: list[dict] = []
	diagnostics: list[Diagnostic] = []
	ok = True
	for path in args.source:
		try:
			program = parse_tsir_file(path, prelude=args.prelude)
		except ParseError as err:
			diagnostics.append(err.diagnostic)
			ok = False
			continue
		except OSError as err:
			diagnostics.append(Diagnostic(message=f"cannot read {path}: {err.strerror}", phase="driver"))
			ok = False
			continue
		_log.info("verifying %d functions from %s", len(program.functions), path)
		result = verify_program(program, config)
		ok = ok and result.ok
		for res in result.functions:
			functions.append(_function_to_json(path, res))
			if not args.json:
				print(res.judgment())
		diagnostics.extend(result.diagnostics)

	exit_code = 0 if ok else 1
	if args.json:
		payload = {
			"exit_code": exit_code,
			"functions": functions,
			"diagnostics": [d.to_json() for d in diagnostics],
		}
		print(json.dumps(payload))
	else:
		for d in diagnostics:
			print(d.render(), file=sys.stderr)
	return exit_code


if __name__ == "__main__":
	sys.exit(main())
