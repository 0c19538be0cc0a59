# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest
from lark.exceptions import UnexpectedInput

from cpybind.decl import ClassDecl, FunctionDecl, ImplDecl, ParamMarker, Receiver, TypeRef, find_option
from cpybind.frontend.parser import DeclSyntaxError, parse_source

SOURCE = """module geometry;
#![include = "geometry.h", doc = "Plane geometry."]

// A point in the plane.
#[class(subclass, name = "Pt")]
struct Point {
	#[get, set] x: long;
	y: long;
	cache: PyObject*;
}

#[methods]
impl Point {
	#[new] fn new(x: long, y: long = 0) -> Point;
	fn scale(self, factor: double, *rest, **opts) -> Self;
	#[classmethod] fn zero(cls) -> Point;
	#[args(b = 5)]
	fn f(self, a: long, b: long, *, k: const char * = "hi", m: long = -3, n: int = MAX_N);
}

#[function]
fn dist(a: Point *, b: Point *) -> double;
"""


def test_parse_module_header() -> None:
	mod = parse_source(SOURCE, file="geometry.bind")
	assert mod.name == "geometry"
	assert [(o.key, o.value) for o in mod.options] == [("include", "geometry.h"), ("doc", "Plane geometry.")]
	assert [type(item) for item in mod.items] == [ClassDecl, ImplDecl, FunctionDecl]
	assert mod.span.file == "geometry.bind"
	assert mod.span.line == 1


def test_parse_struct() -> None:
	point = parse_source(SOURCE).items[0]
	assert point.name == "Point"
	# Marker arguments are flattened next to the marker.
	assert [o.key for o in point.options] == ["class", "subclass", "name"]
	assert find_option(point.options, "name").value == "Pt"
	assert [f.name for f in point.fields] == ["x", "y", "cache"]
	assert [o.key for o in point.fields[0].options] == ["get", "set"]
	assert point.fields[0].type == TypeRef("long")
	assert point.fields[2].type == TypeRef("PyObject *")
	assert point.span.line == 5
	assert point.fields[1].span.line == 8


def test_parse_impl_members() -> None:
	block = parse_source(SOURCE).items[1]
	assert block.target == "Point"
	assert not block.is_protocol
	new, scale, zero, f = block.members

	assert new.receiver is Receiver.NONE
	assert [o.key for o in new.options] == ["new"]
	assert [(p.name, p.default) for p in new.params] == [("x", None), ("y", "0")]
	assert new.return_type == TypeRef("Point")

	assert scale.receiver is Receiver.SELF
	assert [(p.name, p.marker) for p in scale.params] == [
		("factor", ParamMarker.NONE),
		("rest", ParamMarker.STAR),
		("opts", ParamMarker.DOUBLE_STAR),
	]
	assert scale.params[1].type is None
	assert scale.return_type == TypeRef("Self")

	assert zero.receiver is Receiver.CLS
	assert zero.params == ()
	assert zero.span.line == 16


def test_parse_defaults_and_nested_options() -> None:
	f = parse_source(SOURCE).items[1].members[3]
	(args,) = f.options
	assert args.key == "args"
	assert [(o.key, o.value) for o in args.args] == [("b", "5")]
	assert [p.name for p in f.params] == ["a", "b", None, "k", "m", "n"]
	assert f.params[2].marker is ParamMarker.STAR
	k, m, n = f.params[3:]
	assert (k.type, k.default) == (TypeRef("const char *"), '"hi"')
	assert m.default == "-3"
	assert n.default == "MAX_N"
	assert f.return_type == TypeRef("void")


def test_parse_function() -> None:
	dist = parse_source(SOURCE).items[2]
	assert [o.key for o in dist.options] == ["function"]
	assert [p.type for p in dist.params] == [TypeRef("Point *"), TypeRef("Point *")]
	assert dist.return_type == TypeRef("double")


def test_string_escapes() -> None:
	mod = parse_source('module m;\n#![doc = "café\\t\\"q\\"\\n"]\n')
	assert mod.options[0].value == 'café\t"q"\n'


def test_numeric_escapes() -> None:
	mod = parse_source('module m;\n#![doc = "\\xff \\u00e9\\x41 \\101"]\n')
	assert mod.options[0].value == "\xff \xe9A A"


def test_malformed_escape_is_a_declaration_error() -> None:
	with pytest.raises(DeclSyntaxError) as excinfo:
		parse_source('module m;\n#![doc = "bad \\x4"]\n', file="m.bind")
	assert "invalid escape in string" in str(excinfo.value)
	assert excinfo.value.span.line == 2
	assert excinfo.value.span.file == "m.bind"


def test_dotted_module_name_and_empty_body() -> None:
	mod = parse_source("module pkg.geometry;")
	assert mod.name == "pkg.geometry"
	assert mod.items == ()


def test_multi_level_pointer_types() -> None:
	mod = parse_source("module m;\nfn f(argv: const char **, n: unsigned long long);")
	(func,) = mod.items
	assert [p.type.spelling for p in func.params] == ["const char **", "unsigned long long"]


def test_receiver_must_come_first() -> None:
	with pytest.raises(DeclSyntaxError) as excinfo:
		parse_source("module m;\nimpl P { fn f(x: long, self); }", file="m.bind")
	assert "receiver must be the first parameter" in str(excinfo.value)
	assert excinfo.value.span.file == "m.bind"
	assert excinfo.value.span.line == 2


def test_syntax_errors() -> None:
	with pytest.raises(UnexpectedInput) as excinfo:
		parse_source("module m;\nstruct P { x long; }")
	assert excinfo.value.line == 2
	with pytest.raises(UnexpectedInput):
		parse_source("struct P {}")
