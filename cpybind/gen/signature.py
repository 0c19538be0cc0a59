# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Signature model: one callable's parameter list as an ordered, typed, validated
sequence.

Parameter kinds follow Python's calling rules:

	f(a, b=1, *rest, c, d=2, **extra)
	  a      required positional
	  b      optional positional
	  rest   positional collector (tuple)
	  c, d   keyword-only (c required, d optional)
	  extra  keyword collector (dict or NULL)

A bare `*` ends the positional section without collecting anything.

The `args(...)` option can supply defaults and collector markers by name,
overriding what is spelled in the parameter list:

	#[args(b = "1", rest = "*", extra = "**")]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import List, Optional, Sequence, Tuple

from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.span import Span
from cpybind.decl import PYOBJECT, Option, ParamDecl, ParamMarker, TypeRef, find_option

logger = logging.getLogger(__name__)


class ParamKind(Enum):
	REQUIRED_POSITIONAL = auto()
	OPTIONAL_POSITIONAL = auto()
	KEYWORD_ONLY = auto()
	POSITIONAL_COLLECTOR = auto()
	KEYWORD_COLLECTOR = auto()


@dataclass(frozen=True)
class Parameter:
	name: str
	type: TypeRef
	kind: ParamKind
	default: Optional[str] = None
	span: Span = Span()

	@property
	def is_positional(self) -> bool:
		return self.kind in (ParamKind.REQUIRED_POSITIONAL, ParamKind.OPTIONAL_POSITIONAL)

	@property
	def is_required(self) -> bool:
		if self.kind is ParamKind.REQUIRED_POSITIONAL:
			return True
		return self.kind is ParamKind.KEYWORD_ONLY and self.default is None


@dataclass(frozen=True)
class Signature:
	"""Validated parameter list (declaration order preserved)."""

	params: Tuple[Parameter, ...] = ()

	@property
	def positional(self) -> Tuple[Parameter, ...]:
		return tuple(p for p in self.params if p.is_positional)

	@property
	def keyword_only(self) -> Tuple[Parameter, ...]:
		return tuple(p for p in self.params if p.kind is ParamKind.KEYWORD_ONLY)

	@property
	def bindable(self) -> Tuple[Parameter, ...]:
		"""Named slots a call can fill: positionals first, then keyword-only."""
		return self.positional + self.keyword_only

	@property
	def var_positional(self) -> Optional[Parameter]:
		return next((p for p in self.params if p.kind is ParamKind.POSITIONAL_COLLECTOR), None)

	@property
	def var_keyword(self) -> Optional[Parameter]:
		return next((p for p in self.params if p.kind is ParamKind.KEYWORD_COLLECTOR), None)

	@property
	def required_count(self) -> int:
		return sum(1 for p in self.params if p.is_required)

	def is_empty(self) -> bool:
		return not self.params

	def __len__(self) -> int:
		return len(self.params)


def _malformed(message: str, span: Span) -> GenerationError:
	return GenerationError(ErrorKind.MALFORMED_SIGNATURE, message, span=span)


def _apply_args_option(params: Sequence[ParamDecl], args_opt: Option, owner: str) -> List[ParamDecl]:
	overrides = {}
	for entry in args_opt.args:
		if entry.value is None:
			raise _malformed(f"{owner}: args entry '{entry.key}' needs a value", entry.span)
		overrides[entry.key] = entry
	known = {p.name for p in params if p.name is not None}
	for name, entry in overrides.items():
		if name not in known:
			raise _malformed(f"{owner}: args option names unknown parameter '{name}'", entry.span)
	out: List[ParamDecl] = []
	for param in params:
		entry = overrides.get(param.name) if param.name is not None else None
		if entry is None:
			out.append(param)
		elif entry.value == "*":
			out.append(replace(param, marker=ParamMarker.STAR, default=None))
		elif entry.value == "**":
			out.append(replace(param, marker=ParamMarker.DOUBLE_STAR, default=None))
		else:
			out.append(replace(param, default=entry.value))
	return out


def _collector_type(param: ParamDecl, owner: str, span: Span) -> TypeRef:
	if param.type is None or param.type == PYOBJECT:
		return PYOBJECT
	raise _malformed(f"{owner}: collector '{param.name}' must be typed PyObject *, not {param.type}", span)


def build_signature(
	raw: Sequence[ParamDecl],
	*,
	owner: str,
	options: Tuple[Option, ...] = (),
	span: Span = Span(),
) -> Signature:
	"""
	Validate a raw parameter list and return a Signature.

	Args:
	  raw: parameters as declared (receiver excluded).
	  owner: human-readable callable name for messages.
	  options: the callable's options; only `args(...)` is consulted here.
	  span: fallback location for errors on parameters without a span.

	Raises:
	  GenerationError(MalformedSignature) on any ordering/shape violation.
	"""
	args_opt = find_option(options, "args")
	decls = _apply_args_option(raw, args_opt, owner) if args_opt is not None else list(raw)

	params: List[Parameter] = []
	seen_names: set[str] = set()
	seen_star = False
	bare_star: Optional[Span] = None
	seen_kwcollector = False
	seen_optional = False
	for decl in decls:
		pspan = decl.span if decl.span.is_known() else span
		if seen_kwcollector:
			raise _malformed(f"{owner}: keyword collector must be the last parameter", pspan)
		if decl.name is not None:
			if decl.name in seen_names:
				raise _malformed(f"{owner}: duplicate parameter '{decl.name}'", pspan)
			seen_names.add(decl.name)

		if decl.marker is ParamMarker.STAR:
			if seen_star:
				raise _malformed(f"{owner}: at most one positional collector or bare '*' is allowed", pspan)
			seen_star = True
			if decl.default is not None:
				raise _malformed(f"{owner}: collector '{decl.name}' cannot have a default", pspan)
			if decl.name is None:
				bare_star = pspan
				continue
			params.append(
				Parameter(
					name=decl.name,
					type=_collector_type(decl, owner, pspan),
					kind=ParamKind.POSITIONAL_COLLECTOR,
					span=decl.span,
				)
			)
			continue

		if decl.marker is ParamMarker.DOUBLE_STAR:
			if decl.name is None:
				raise _malformed(f"{owner}: keyword collector needs a name", pspan)
			if decl.default is not None:
				raise _malformed(f"{owner}: collector '{decl.name}' cannot have a default", pspan)
			if bare_star is not None and not any(p.kind is ParamKind.KEYWORD_ONLY for p in params):
				raise _malformed(f"{owner}: named parameters must follow bare '*'", bare_star)
			seen_kwcollector = True
			params.append(
				Parameter(
					name=decl.name,
					type=_collector_type(decl, owner, pspan),
					kind=ParamKind.KEYWORD_COLLECTOR,
					span=decl.span,
				)
			)
			continue

		if decl.name is None:
			raise _malformed(f"{owner}: parameter without a name", pspan)
		if decl.type is None:
			raise _malformed(f"{owner}: parameter '{decl.name}' has no type", pspan)
		if seen_star:
			kind = ParamKind.KEYWORD_ONLY
		elif decl.default is not None:
			kind = ParamKind.OPTIONAL_POSITIONAL
			seen_optional = True
		elif seen_optional:
			raise _malformed(
				f"{owner}: required parameter '{decl.name}' follows an optional parameter", pspan
			)
		else:
			kind = ParamKind.REQUIRED_POSITIONAL
		params.append(Parameter(name=decl.name, type=decl.type, kind=kind, default=decl.default, span=decl.span))

	if bare_star is not None and not any(p.kind is ParamKind.KEYWORD_ONLY for p in params):
		raise _malformed(f"{owner}: named parameters must follow bare '*'", bare_star)

	sig = Signature(params=tuple(params))
	logger.debug("signature %s: %s", owner, [(p.name, p.kind.name) for p in sig.params])
	return sig


__all__ = ["ParamKind", "Parameter", "Signature", "build_signature"]
