"""
Common diagnostic structure for the generator, the front end and the CLI.

A diagnostic is a message plus a span, an optional error-kind code and the
phase that produced it. Related spans point at secondary declarations
involved in the same error (both members of a duplicate slot, both items of
a duplicate export).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .errors import GenerationError
from .span import Span


@dataclass
class Diagnostic:
	"""Represents a generator diagnostic (error/warning/etc.)."""

	message: str
	code: str | None = None
	# Phase label: "parser", "config" or "generate".
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Source location (Span() denotes unknown).
	notes: list[str] = field(default_factory=list)
	related: list[Span] = field(default_factory=list)

	def __post_init__(self) -> None:
		# Normalize missing spans to the sentinel Span() so downstream tooling
		# can rely on a structured object instead of None.
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	@classmethod
	def from_error(cls, err: GenerationError, *, phase: str = "generate") -> "Diagnostic":
		notes = [f"related declaration at {sp}" for sp in err.related]
		return cls(
			message=err.message,
			code=err.kind.value,
			phase=phase,
			span=err.span,
			notes=notes,
			related=list(err.related),
		)

	def render(self) -> str:
		"""Render as a single `file:line:col: severity[code]: message` line."""
		code = f"[{self.code}]" if self.code else ""
		return f"{self.span}: {self.severity}{code}: {self.message}"

	def to_json(self, default_file: str | None = None) -> Dict[str, Any]:
		"""Render to a structured JSON-friendly dict."""
		return {
			"phase": self.phase,
			"code": self.code,
			"message": self.message,
			"severity": self.severity,
			"file": self.span.file or default_file,
			"line": self.span.line,
			"column": self.span.column,
			"notes": list(self.notes),
		}


def has_errors(diagnostics: List[Diagnostic]) -> bool:
	return any(d.severity == "error" for d in diagnostics)


__all__ = ["Diagnostic", "has_errors"]
