# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from cpybind.core.diagnostics import Diagnostic, has_errors
from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.span import Span


def test_from_error_carries_kind_and_related_spans() -> None:
	first = Span(file="geo.bind", line=3, column=5)
	err = GenerationError(
		ErrorKind.DUPLICATE_SLOT,
		"Point: slot tp_repr implemented twice",
		span=Span(file="geo.bind", line=9, column=5),
		related=(first,),
	)
	diag = Diagnostic.from_error(err)
	assert diag.code == "DuplicateSlot"
	assert diag.phase == "generate"
	assert diag.related == [first]
	assert diag.notes == ["related declaration at geo.bind:3:5"]
	assert diag.render() == "geo.bind:9:5: error[DuplicateSlot]: Point: slot tp_repr implemented twice"


def test_unknown_span() -> None:
	diag = Diagnostic(message="no input files", phase="parser", span=None)  # type: ignore[arg-type]
	assert diag.span == Span()
	assert diag.render() == "<decl>:?:?: error: no input files"


def test_to_json_fills_default_file() -> None:
	diag = Diagnostic(message="boom", code="UnsupportedType", phase="generate", span=Span(line=2, column=1))
	assert diag.to_json("geo.bind") == {
		"phase": "generate",
		"code": "UnsupportedType",
		"message": "boom",
		"severity": "error",
		"file": "geo.bind",
		"line": 2,
		"column": 1,
		"notes": [],
	}


def test_has_errors() -> None:
	assert not has_errors([])
	assert not has_errors([Diagnostic(message="w", severity="warning")])
	assert has_errors([Diagnostic(message="e")])


def test_span_from_loc() -> None:
	class Meta:
		line = 4
		column = 2
		end_line = 4
		end_column = 9

	span = Span.from_loc(Meta(), file="geo.bind")
	assert (span.file, span.line, span.column, span.end_column) == ("geo.bind", 4, 2, 9)
	assert span.is_known()
	known = Span(line=1)
	assert Span.from_loc(known, file="x.bind") == Span(file="x.bind", line=1)
	assert not Span.from_loc(None).is_known()
