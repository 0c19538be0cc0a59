# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Shared helpers for tests that need declaration IR.

These builders avoid re-spelling the frozen dataclasses of `cpybind.decl` in
every test, and give each declaration a distinct span (line numbers count up)
so diagnostics can be told apart.
"""

from __future__ import annotations

import itertools
from typing import Iterable, Optional, Tuple, Union

from cpybind.core.span import Span
from cpybind.decl import (
	ClassDecl,
	FieldDecl,
	FunctionDecl,
	ImplDecl,
	Item,
	ModuleDecl,
	Option,
	ParamDecl,
	ParamMarker,
	Receiver,
	TypeRef,
)

_LINES = itertools.count(1)

OptionSpec = Union[str, Tuple[str, str], Option]


def span(line: Optional[int] = None, *, file: str = "test.bind") -> Span:
	"""A known span; consecutive calls without `line` get increasing lines."""
	return Span(file=file, line=next(_LINES) if line is None else line, column=1)


def opt(key: str, value: Optional[str] = None, *args: Option) -> Option:
	return Option(key, value=value, args=tuple(args), span=span())


def options(specs: Iterable[OptionSpec]) -> Tuple[Option, ...]:
	"""`["get", ("name", "x"), opt(...)]` -> a tuple of Options."""
	out = []
	for spec in specs:
		if isinstance(spec, Option):
			out.append(spec)
		elif isinstance(spec, tuple):
			out.append(opt(spec[0], spec[1]))
		else:
			out.append(opt(spec))
	return tuple(out)


def param(name: str, ty: str = "long", default: Optional[str] = None) -> ParamDecl:
	return ParamDecl(name=name, type=TypeRef.of(ty), default=default, span=span())


def star(name: Optional[str] = None) -> ParamDecl:
	"""`*name` collector, or the bare `*` separator when `name` is None."""
	return ParamDecl(name=name, marker=ParamMarker.STAR, span=span())


def kwstar(name: str) -> ParamDecl:
	return ParamDecl(name=name, marker=ParamMarker.DOUBLE_STAR, span=span())


def fn(
	name: str,
	*params: ParamDecl,
	ret: str = "void",
	receiver: Receiver = Receiver.NONE,
	opts: Iterable[OptionSpec] = (),
) -> FunctionDecl:
	return FunctionDecl(
		name=name,
		params=tuple(params),
		return_type=TypeRef.of(ret),
		receiver=receiver,
		options=options(opts),
		span=span(),
	)


def method(name: str, *params: ParamDecl, ret: str = "void", opts: Iterable[OptionSpec] = ()) -> FunctionDecl:
	"""A member taking `self`."""
	return fn(name, *params, ret=ret, receiver=Receiver.SELF, opts=opts)


def field(name: str, ty: str = "long", opts: Iterable[OptionSpec] = ()) -> FieldDecl:
	return FieldDecl(name=name, type=TypeRef.of(ty), options=options(opts), span=span())


def cls(name: str, *fields: FieldDecl, opts: Iterable[OptionSpec] = ("class",)) -> ClassDecl:
	return ClassDecl(name=name, fields=tuple(fields), options=options(opts), span=span())


def impl(target: str, *members: FunctionDecl, proto: bool = False) -> ImplDecl:
	return ImplDecl(
		target=target,
		members=tuple(members),
		options=options(["proto" if proto else "methods"]),
		span=span(),
	)


def module(name: str, *items: Item, opts: Iterable[OptionSpec] = ()) -> ModuleDecl:
	return ModuleDecl(name=name, items=tuple(items), options=options(opts), span=span())


__all__ = [
	"span",
	"opt",
	"options",
	"param",
	"star",
	"kwstar",
	"fn",
	"method",
	"field",
	"cls",
	"impl",
	"module",
]
