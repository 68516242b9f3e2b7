# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Verifier configuration (mapped from CLI flags by the driver)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class VerifierConfig:
	"""
	Knobs for a verification run.

	- jobs: functions verified concurrently (1 = sequential, in program order).
	- all_errors: keep checking the remaining labels of a rejected function and
	  report one diagnostic per failing label instead of stopping at the first.
	"""

	jobs: int = 1
	all_errors: bool = False

	def __post_init__(self) -> None:
		if self.jobs < 1:
			raise ValueError(f"jobs must be >= 1 (got {self.jobs})")


DEFAULT_CONFIG = VerifierConfig()


__all__ = ["VerifierConfig", "DEFAULT_CONFIG"]
