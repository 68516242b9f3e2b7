"""
tsir.core: shared core types/diagnostics used by every verifier stage.

Modules:
  - span: best-effort source positions
  - diagnostics: Diagnostic, ErrorKind taxonomy, VerifyError
  - types_core: Type variants and Lifetime
  - type_subst: parameter substitution and pattern matching
"""

__all__ = [
	"span",
	"diagnostics",
	"types_core",
	"type_subst",
]
