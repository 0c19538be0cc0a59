# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from cpybind.core.config import GeneratorConfig
from cpybind.gen.driver import generate_module
from cpybind.test_support import cls, field, fn, impl, method, module, param


def _codes(result):
	return [d.code for d in result.diagnostics]


def _point_unit():
	return [
		cls("Point", field("x", opts=["get"]), opts=["class", "subclass"]),
		impl("Point", fn("new", param("x"), ret="Point", opts=["new"]), method("norm", ret="double")),
	]


def test_clean_module() -> None:
	mod = module(
		"geometry",
		*_point_unit(),
		fn("dist", param("a", "Point *"), param("b", "Point *"), ret="double"),
	)
	result = generate_module(mod)
	assert result.ok
	assert result.diagnostics == []
	assert result.module.exports == ["Point", "dist"]
	assert "PyInit_geometry(void)" in result.text
	assert '.tp_name = "geometry.Point",' in result.text


def test_failing_unit_is_isolated() -> None:
	bad = fn("broken", param("x", "struct opaque *"))
	good = fn("version", ret="int")
	result = generate_module(module("geometry", *_point_unit(), bad, good))
	assert not result.ok
	assert _codes(result) == ["UnsupportedType"]
	assert result.diagnostics[0].span == bad.params[0].span
	assert result.module.exports == ["Point", "version"]
	assert "broken" not in result.text


def test_dependents_of_a_failed_class_are_dropped() -> None:
	shape = cls("Shape", opts=["class", "frozen"])
	user = fn("area", param("s", "Shape *"), ret="double")
	child = cls("Square", opts=["class", ("base", "Shape")])
	holder = cls("Box")
	holder_impl = impl("Box", method("shape", param("s", "Shape *")))
	result = generate_module(module("geometry", shape, user, child, holder, holder_impl))
	assert _codes(result) == ["UnrecognizedOption", "UnresolvedBaseType", "UnsupportedType", "UnsupportedType"]
	assert result.module.exports == []
	assert "Shape" not in result.text
	assert "Box_Type" not in result.text


def test_pruning_is_transitive() -> None:
	a = cls("A", opts=["class", "frozen"])
	b = cls("B", field("a_ref", "PyObject *"))
	b_impl = impl("B", method("attach", param("a", "A *")))
	c = fn("make_b", param("b", "B *"))
	result = generate_module(module("m", a, b, b_impl, c))
	assert result.module.exports == []
	assert len(result.diagnostics) == 3


def test_base_is_generated_before_subclass() -> None:
	mod = module(
		"geometry",
		*_point_unit(),
		cls("Point3", field("z"), opts=["class", ("base", "Point")]),
		impl("Point3", method("init", param("x"), param("z"), opts=["new"])),
	)
	result = generate_module(mod)
	assert result.ok
	text = result.text
	assert text.index("PyType_Ready(&Point_Type)") < text.index("PyType_Ready(&Point3_Type)")
	assert "Point3_init(&obj->inner, &obj->base.inner, arg_x, arg_z);" in text


def test_subclass_without_constructor_is_dropped() -> None:
	mod = module(
		"geometry",
		*_point_unit(),
		cls("Point3", field("z"), opts=["class", ("base", "Point")]),
		fn("lift", param("p", "Point *"), ret="Point3"),
	)
	result = generate_module(mod)
	assert _codes(result) == ["UnresolvedBaseType", "UnsupportedType"]
	assert result.module.exports == ["Point"]
	assert "Point3_Type" not in result.text


def test_duplicate_class() -> None:
	first = cls("Point")
	second = cls("Point")
	result = generate_module(module("m", first, second))
	assert _codes(result) == ["DuplicateExportName"]
	assert result.diagnostics[0].span == second.span
	assert result.diagnostics[0].related == [first.span]
	assert result.module.exports == ["Point"]


def test_duplicate_export_keeps_the_first() -> None:
	first = fn("dist", ret="double")
	second = fn("distance", ret="double", opts=[("name", "dist")])
	result = generate_module(module("m", first, second))
	assert _codes(result) == ["DuplicateExportName"]
	assert result.diagnostics[0].span == second.span
	assert result.module.exports == ["dist"]
	assert "fn__distance__meth" not in result.text


def test_impl_for_unknown_class() -> None:
	block = impl("Ghost", method("boo"))
	result = generate_module(module("m", block))
	assert _codes(result) == ["UnsupportedType"]
	assert result.diagnostics[0].span == block.span
	assert result.module is not None


def test_module_level_failure() -> None:
	result = generate_module(module("m", fn("f"), opts=["threads"]))
	assert result.module is None
	assert result.text == ""
	assert _codes(result) == ["UnrecognizedOption"]


def test_config_is_applied() -> None:
	config = GeneratorConfig(
		module_name_override="_geometry",
		type_aliases={"coord_t": "double"},
		runtime_prefix="geo",
	)
	result = generate_module(module("geometry", fn("scale", param("k", "coord_t"), ret="coord_t")), config)
	assert result.ok
	assert result.module.name == "_geometry"
	assert "PyInit__geometry(void)" in result.text
	assert "geo_bind_args(" in result.text
	assert "double rv = scale(arg_k);" in result.text
