# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Generation error taxonomy.

Every stage signals a failure by raising `GenerationError` carrying one
`ErrorKind`. The batch driver converts it into a `Diagnostic` attached to the
offending declaration; nothing below the driver catches it.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from .span import Span


class ErrorKind(Enum):
	MALFORMED_SIGNATURE = "MalformedSignature"
	CONFLICTING_CLASSIFICATION = "ConflictingClassification"
	UNSUPPORTED_SLOT_ON_TYPE = "UnsupportedSlotOnType"
	DUPLICATE_SLOT = "DuplicateSlot"
	INVALID_DEFAULT_EXPRESSION = "InvalidDefaultExpression"
	UNRESOLVED_BASE_TYPE = "UnresolvedBaseType"
	DUPLICATE_EXPORT_NAME = "DuplicateExportName"
	UNRECOGNIZED_OPTION = "UnrecognizedOption"
	UNSUPPORTED_TYPE = "UnsupportedType"


class GenerationError(Exception):
	"""
	Non-recoverable failure for a single declaration.

	`span` points at the triggering declaration; `related` carries secondary
	locations (e.g. the first of two members claiming the same slot).
	"""

	def __init__(
		self,
		kind: ErrorKind,
		message: str,
		*,
		span: Span | None = None,
		related: Sequence[Span] = (),
	) -> None:
		super().__init__(message)
		self.kind = kind
		self.message = message
		self.span = span if span is not None else Span()
		self.related = tuple(related)

	def __str__(self) -> str:
		return f"{self.kind.value}: {self.message}"


class ConfigError(ValueError):
	"""Invalid generator configuration (raised before any declaration is processed)."""


__all__ = ["ErrorKind", "GenerationError", "ConfigError"]
