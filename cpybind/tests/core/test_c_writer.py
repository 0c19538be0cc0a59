# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from cpybind.core.fragment import CodeFragment, CWriter, c_decl, c_ident, c_string_literal, is_c_ident


def test_identifiers() -> None:
	assert is_c_ident("Point_new")
	assert not is_c_ident("1abc")
	assert not is_c_ident("a-b")
	assert c_ident("geo.metry") == "geo_metry"
	assert c_ident("3d") == "_3d"
	assert c_decl("PyObject *", "x") == "PyObject *x"
	assert c_decl("long", "x") == "long x"


def test_string_literal_escapes() -> None:
	assert c_string_literal('say "hi"\n') == '"say \\"hi\\"\\n"'
	assert c_string_literal("a\\b\tc") == '"a\\\\b\\tc"'
	assert c_string_literal("é") == '"\\303\\251"'


def test_blocks_and_labels() -> None:
	w = CWriter()
	w.line("static int")
	w.line("f(void)")
	with w.block():
		w.line("int rv = -1;")
		with w.block("if (g() < 0)"):
			w.goto("done")
		w.line("rv = 0;")
		w.label("done")
		w.label("unused")
		w.line("return rv;")
	assert w.render() == (
		"static int\n"
		"f(void)\n"
		"{\n"
		"\tint rv = -1;\n"
		"\tif (g() < 0) {\n"
		"\t\tgoto done;\n"
		"\t}\n"
		"\trv = 0;\n"
		"done:\n"
		"\treturn rv;\n"
		"}\n"
	)


def test_block_trailer() -> None:
	w = CWriter()
	with w.block("static T t =", trailer=";"):
		w.line(".x = 1,")
	assert w.render() == "static T t = {\n\t.x = 1,\n};\n"


def test_fragment_sections() -> None:
	frag = CodeFragment()
	frag.preamble.append("#define PY_SSIZE_T_CLEAN")
	frag.include("<Python.h>")
	frag.include("<Python.h>")
	frag.define("int b(void) { return 0; }\n")
	frag.declare("int b(void);")

	other = CodeFragment()
	other.include("point.h")
	other.declare("int a(void);")
	other.define("int a(void) { return 1; }")
	frag.extend(other)

	assert frag.includes == ["<Python.h>", "point.h"]
	assert frag.render() == (
		"#define PY_SSIZE_T_CLEAN\n\n"
		'#include <Python.h>\n#include "point.h"\n\n'
		"int b(void);\nint a(void);\n\n"
		"int b(void) { return 0; }\n\n"
		"int a(void) { return 1; }\n"
	)
