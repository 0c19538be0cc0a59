# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from cpybind.core.config import GeneratorConfig
from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.gen.convert import TypeResolver
from cpybind.gen.module import build_function, build_module, check_exports
from cpybind.gen.typedesc import build_type_descriptor
from cpybind.test_support import cls, fn, impl, options, param

_RESOLVER = TypeResolver(["Point"])


def _point(*opts):
	block = impl("Point", fn("new", param("x"), ret="Point", opts=["new"]))
	return build_type_descriptor(cls("Point", opts=["class", *opts]), [block], module_name="geometry")


def _dist(*opts):
	decl = fn("dist", param("a", "Point *"), param("b", "Point *"), ret="double", opts=["function", *opts])
	return build_function(decl, resolver=_RESOLVER)


def test_module_layout() -> None:
	mod = build_module("geometry", [_point()], [_dist()], options=options([("doc", "Plane geometry.")]))
	text = mod.render()
	assert text.startswith("#define PY_SSIZE_T_CLEAN\n\n#include <Python.h>\n")
	assert mod.exports == ["Point", "dist"]
	assert mod.init_function == "PyInit_geometry"
	assert "PyMODINIT_FUNC\nPyInit_geometry(void)" in text
	assert "\tif (PyType_Ready(&Point_Type) < 0)\n\t\treturn NULL;" in text
	assert 'PyModule_AddObjectRef(module, "Point", (PyObject *)&Point_Type) < 0' in text
	assert "static PyMethodDef geometry_functions[] = {" in text
	assert (
		'{"dist", (PyCFunction)(void (*)(void))fn__dist__meth, METH_VARARGS | METH_KEYWORDS, '
		'"dist($module, a, b)\\n--\\n\\n"},'
	) in text
	assert ".m_methods = geometry_functions," in text
	assert '.m_doc = "Plane geometry.",' in text
	# declarations precede the runtime helper, which precedes every adapter
	assert text.index("typedef struct {\n\tPyObject_HEAD") < text.index("cpyb_bind_args(const char *fname")
	assert text.index("cpyb_bind_args(const char *fname") < text.index("Point__new__slot(PyTypeObject")


def test_function_wrapper() -> None:
	func = _dist()
	assert func.exposed_name == "dist"
	assert func.entry.flags == "METH_VARARGS | METH_KEYWORDS"
	assert "static PyObject *\nfn__dist__meth(PyObject *Py_UNUSED(module), PyObject *args, PyObject *kwargs)" in func.text
	assert "double rv = dist(arg_a, arg_b);" in func.text
	assert "result = PyFloat_FromDouble((double)rv);" in func.text


def test_function_renaming() -> None:
	func = _dist(("name", "distance"))
	assert func.exposed_name == "distance"
	assert func.name == "dist"


def test_runtime_helper_only_when_needed() -> None:
	mod = build_module("tiny", functions=[build_function(fn("version", ret="int"), resolver=_RESOLVER)])
	text = mod.render()
	assert "_bind_args" not in text
	assert "METH_NOARGS" in text


def test_runtime_prefix() -> None:
	config = GeneratorConfig(runtime_prefix="geo")
	func = build_function(fn("f", param("x")), resolver=_RESOLVER, config=config)
	text = build_module("m", functions=[func], config=config).render()
	assert "geo_bind_args(const char *fname" in text
	assert "cpyb_" not in text


def test_include_options() -> None:
	opts = options([("include", "geometry.h"), ("include", "<math.h>")])
	text = build_module("geometry", options=opts).render()
	assert '#include "geometry.h"' in text
	assert "#include <math.h>" in text
	assert text.index("#include <Python.h>") < text.index('#include "geometry.h"')


def test_offsetof_header_is_included() -> None:
	text = build_module("geometry", [_point("weakref")]).render()
	assert ".tp_weaklistoffset = offsetof(PointObject, weakreflist)," in text
	assert "#include <stddef.h>" in text
	assert text.index("#include <stddef.h>") < text.index("offsetof(")


def test_empty_module() -> None:
	mod = build_module("empty")
	assert mod.exports == []
	text = mod.render()
	assert ".m_methods" not in text
	assert "goto fail;" not in text
	assert "PyInit_empty(void)" in text


def test_hidden_type_is_readied_but_not_exported() -> None:
	mod = build_module("geometry", [_point("hidden")])
	text = mod.render()
	assert mod.exports == []
	assert "PyType_Ready(&Point_Type)" in text
	assert "PyModule_AddObjectRef" not in text


def test_hidden_function_is_dropped() -> None:
	mod = build_module("geometry", functions=[_dist("hidden")])
	assert mod.functions == ()
	assert "fn__dist__meth" not in mod.render()


def test_duplicate_exports() -> None:
	first = _dist()
	second = build_function(fn("distance", opts=[("name", "dist")]), resolver=_RESOLVER)
	with pytest.raises(GenerationError) as excinfo:
		check_exports([], [first, second])
	assert excinfo.value.kind is ErrorKind.DUPLICATE_EXPORT_NAME
	assert excinfo.value.span == second.span
	assert excinfo.value.related == (first.span,)


def test_class_and_function_share_the_namespace() -> None:
	func = build_function(fn("make_point", opts=[("name", "Point")]), resolver=_RESOLVER)
	with pytest.raises(GenerationError) as excinfo:
		build_module("geometry", [_point()], [func])
	assert excinfo.value.kind is ErrorKind.DUPLICATE_EXPORT_NAME


def test_unrecognized_module_option() -> None:
	with pytest.raises(GenerationError) as excinfo:
		build_module("geometry", options=options(["threads"]))
	assert excinfo.value.kind is ErrorKind.UNRECOGNIZED_OPTION
