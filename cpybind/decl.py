# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Declaration IR consumed by the generator.

This is the stable boundary between whatever produced the declarations (the
bundled `.bind` front end, a host compiler plugin, hand-built tests) and the
generator core. Nodes are frozen: the generator never mutates its input.

Shapes:
  ModuleDecl   name + ordered items (ClassDecl | ImplDecl | FunctionDecl)
  ClassDecl    native struct exposed as a type; fields are optional accessors
  ImplDecl     member functions attached to a class (`proto` marks a protocol block)
  FunctionDecl a native function: receiver, params, return type, options
  Option       `key`, `key = value` or `key(nested, ...)`
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, Optional, Tuple, Union

from cpybind.core.span import Span

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TypeRef:
	"""A native C type spelling, normalized (`PyObject*` -> `PyObject *`)."""

	spelling: str

	@classmethod
	def of(cls, text: str) -> "TypeRef":
		text = text.replace("*", " * ")
		text = _WS_RE.sub(" ", text).strip()
		# Collapse `* *` into `**` while keeping the space before the first star.
		text = text.replace("* *", "**")
		return cls(text)

	@property
	def is_pointer(self) -> bool:
		return self.spelling.endswith("*")

	@property
	def pointee(self) -> str:
		"""Spelling with one level of pointer stripped (`Point *` -> `Point`)."""
		if not self.is_pointer:
			return self.spelling
		return self.spelling[:-1].rstrip()

	def __str__(self) -> str:
		return self.spelling


VOID = TypeRef("void")
PYOBJECT = TypeRef("PyObject *")


class Receiver(Enum):
	NONE = auto()
	SELF = auto()
	CLS = auto()


class ParamMarker(Enum):
	NONE = auto()
	STAR = auto()  # `*name` collector, or bare `*` when name is None
	DOUBLE_STAR = auto()  # `**name`


@dataclass(frozen=True)
class Option:
	key: str
	value: Optional[str] = None
	args: Tuple["Option", ...] = ()
	span: Span = Span()


def find_option(options: Tuple[Option, ...], key: str) -> Optional[Option]:
	for opt in options:
		if opt.key == key:
			return opt
	return None


def iter_options(options: Tuple[Option, ...], *keys: str) -> Iterator[Option]:
	for opt in options:
		if opt.key in keys:
			yield opt


@dataclass(frozen=True)
class ParamDecl:
	name: Optional[str]
	type: Optional[TypeRef] = None
	default: Optional[str] = None
	marker: ParamMarker = ParamMarker.NONE
	span: Span = Span()


@dataclass(frozen=True)
class FunctionDecl:
	name: str
	params: Tuple[ParamDecl, ...] = ()
	return_type: TypeRef = VOID
	receiver: Receiver = Receiver.NONE
	options: Tuple[Option, ...] = ()
	span: Span = Span()


@dataclass(frozen=True)
class FieldDecl:
	name: str
	type: TypeRef
	options: Tuple[Option, ...] = ()
	span: Span = Span()


@dataclass(frozen=True)
class ClassDecl:
	name: str
	fields: Tuple[FieldDecl, ...] = ()
	options: Tuple[Option, ...] = ()
	span: Span = Span()


@dataclass(frozen=True)
class ImplDecl:
	target: str
	members: Tuple[FunctionDecl, ...] = ()
	options: Tuple[Option, ...] = ()
	span: Span = Span()

	@property
	def is_protocol(self) -> bool:
		return find_option(self.options, "proto") is not None


Item = Union[ClassDecl, ImplDecl, FunctionDecl]


@dataclass(frozen=True)
class ModuleDecl:
	name: str
	items: Tuple[Item, ...] = ()
	options: Tuple[Option, ...] = ()
	span: Span = Span()


__all__ = [
	"TypeRef",
	"VOID",
	"PYOBJECT",
	"Receiver",
	"ParamMarker",
	"Option",
	"find_option",
	"iter_options",
	"ParamDecl",
	"FunctionDecl",
	"FieldDecl",
	"ClassDecl",
	"ImplDecl",
	"Item",
	"ModuleDecl",
]
