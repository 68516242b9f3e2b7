# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
tsir: verifier for a typestate-extended CFG intermediate representation.

Verification modules live under this package. The CLI entrypoint is
`tsir.tsirc:main`.
"""

__all__ = []
