# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from cpybind.core.config import GeneratorConfig
from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.decl import Receiver
from cpybind.gen.slot_defs import SlotKind
from cpybind.gen.typedesc import build_type_descriptor
from cpybind.test_support import cls, field, fn, impl, kwstar, method, param, star


def _point_impl():
	return impl(
		"Point",
		fn("new", param("x", "int"), param("y", "int", default="0"), ret="Point", opts=["new"]),
		method("scale", param("factor", "double"), star("rest"), kwstar("opts"), ret="Self"),
		method("norm", ret="double"),
		fn("zero", ret="Point", receiver=Receiver.CLS, opts=["classmethod"]),
		fn("origin", ret="Point", opts=["static"]),
	)


def _point(**kwargs):
	decl = cls("Point", field("x", opts=["get", "set"]), field("y"), opts=["class", "subclass"])
	return build_type_descriptor(decl, [_point_impl()], module_name="geometry", **kwargs)


def test_point_descriptor_tables() -> None:
	desc = _point()
	assert desc.exposed_name == "Point"
	assert [m.name for m in desc.methods] == ["scale", "norm", "zero", "origin"]
	assert desc.method("scale").flags == "METH_VARARGS | METH_KEYWORDS"
	assert desc.method("norm").flags == "METH_NOARGS"
	assert desc.method("zero").flags == "METH_NOARGS | METH_CLASS"
	assert desc.method("origin").flags == "METH_NOARGS | METH_STATIC"
	assert desc.method("missing") is None
	assert SlotKind.CONSTRUCT in desc.slots
	assert [(g.name, g.getter, g.setter) for g in desc.getset] == [("x", "Point__x__fget", "Point__x__fset")]
	assert desc.flags.is_base_type
	assert not desc.flags.supports_gc


def test_text_signatures() -> None:
	desc = _point()
	assert desc.method("scale").doc == "scale($self, factor, *rest, **opts)\n--\n\n"
	assert desc.method("norm").doc == "norm($self)\n--\n\n"
	assert desc.method("zero").doc == "zero($type)\n--\n\n"
	assert desc.method("origin").doc == "origin()\n--\n\n"
	text = desc.fragment.render()
	assert '.tp_doc = "Point(x, y=0)\\n--\\n\\n",' in text


def test_text_signatures_can_be_disabled() -> None:
	desc = _point(config=GeneratorConfig(auto_text_signature=False))
	assert desc.method("scale").doc is None
	assert ".tp_doc" not in desc.fragment.render()


def test_rendered_type_object() -> None:
	text = _point().fragment.render()
	assert "typedef struct {\n\tPyObject_HEAD\n\tPoint inner;\n} PointObject;" in text
	assert "static PyTypeObject Point_Type;" in text
	assert "static inline PyObject *\nPoint_wrap(Point value)" in text
	assert '.tp_name = "geometry.Point",' in text
	assert ".tp_flags = Py_TPFLAGS_DEFAULT | Py_TPFLAGS_BASETYPE," in text
	assert ".tp_new = Point__new__slot," in text
	assert ".tp_methods = Point_methods," in text
	assert ".tp_getset = Point_getset," in text
	assert '{"x", Point__x__fget, Point__x__fset, NULL, NULL},' in text
	assert "Py_TYPE(self)->tp_free(self);" in text


def test_method_wrappers() -> None:
	text = _point().fragment.render()
	assert "Point_scale(&((PointObject *)self)->inner, arg_factor, arg_rest, arg_opts);" in text
	assert "result = Py_NewRef(self);" in text
	assert "Py_XDECREF(arg_rest);" in text
	assert "rv = Point_zero((PyTypeObject *)type);" in text
	assert "Point__origin__meth(PyObject *Py_UNUSED(self), PyObject *Py_UNUSED(ignored))" in text


def test_factory_constructor() -> None:
	text = _point().fragment.render()
	assert "Point value = Point_new(arg_x, arg_y);" in text
	assert "obj = (PointObject *)subtype->tp_alloc(subtype, 0);" in text
	assert "obj->inner = value;" in text


def test_initializer_constructor() -> None:
	decl = cls("Point", field("x"))
	block = impl("Point", method("init", param("x"), opts=["new"]))
	text = build_type_descriptor(decl, [block]).fragment.render()
	assert "Point_init(&obj->inner, arg_x);" in text


def test_constructor_must_return_its_class() -> None:
	block = impl("Point", fn("new", param("x"), ret="long", opts=["new"]))
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(cls("Point"), [block])
	assert excinfo.value.kind is ErrorKind.MALFORMED_SIGNATURE


def test_type_without_members_or_slots() -> None:
	desc = build_type_descriptor(cls("Empty"))
	assert len(desc.slots) == 0
	assert desc.methods == ()
	text = desc.fragment.render()
	assert "static PyTypeObject Empty_Type = {" in text
	assert ".tp_new" not in text
	assert ".tp_methods" not in text


def _function(text: str, header: str) -> str:
	start = text.index(header)
	return text[start:text.index("\n}\n", start)]


def _point3(*fields, block=None, generated=None):
	if block is None:
		block = impl("Point3", method("init", param("z"), opts=["new"]))
	decl = cls("Point3", *fields, opts=["class", "subclass", ("base", "Point")])
	return build_type_descriptor(decl, [block], generated=generated or {"Point": _point()}, module_name="geometry")


def test_subclass_embeds_base() -> None:
	desc = _point3(field("z", opts=["get"]))
	assert desc.base == "Point"
	assert desc.ancestors == ("Point",)
	text = desc.fragment.render()
	assert "\tPointObject base;\n\tPoint3 inner;" in text
	assert ".tp_base = &Point_Type," in text
	assert "Point__dealloc__slot(self);" in text
	assert "Point3_wrap" not in text


def test_subclass_constructor_initializes_base_part() -> None:
	text = _point3().fragment.render()
	new = _function(text, "Point3__new__slot(PyTypeObject *subtype")
	assert "obj = (Point3Object *)subtype->tp_alloc(subtype, 0);" in new
	assert "Point3_init(&obj->inner, &obj->base.inner, arg_z);" in new


def test_constructor_receives_every_ancestor() -> None:
	generated = {"Point": _point()}
	generated["Point3"] = _point3(generated=generated)
	decl = cls("Point4", opts=["class", ("base", "Point3")])
	block = impl("Point4", method("init", opts=["new"]))
	desc = build_type_descriptor(decl, [block], generated=generated)
	assert desc.ancestors == ("Point3", "Point")
	assert "Point4_init(&obj->inner, &obj->base.inner, &obj->base.base.inner);" in desc.fragment.render()


def test_subclass_requires_own_constructor() -> None:
	base = _point()
	decl = cls("Point3", field("z"), opts=["class", ("base", "Point")])
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(decl, [impl("Point3", method("norm", ret="double"))], generated={"Point": base})
	assert excinfo.value.kind is ErrorKind.UNRESOLVED_BASE_TYPE
	assert "must declare its own constructor" in excinfo.value.message
	assert excinfo.value.related == (base.span,)


def test_subclass_factory_constructor_is_rejected() -> None:
	block = impl("Point3", fn("new", param("z"), ret="Point3", opts=["new"]))
	with pytest.raises(GenerationError) as excinfo:
		_point3(block=block)
	assert "base part" in excinfo.value.message


def test_subclass_cannot_be_returned_by_value() -> None:
	block = impl("Point3", method("init", opts=["new"]), method("copy", ret="Point3"))
	with pytest.raises(GenerationError) as excinfo:
		_point3(block=block)
	assert excinfo.value.kind is ErrorKind.UNSUPPORTED_TYPE
	assert "cannot return subclass 'Point3' by value" in excinfo.value.message


def test_base_must_be_generated_and_subclassable() -> None:
	decl = cls("Point3", opts=["class", ("base", "Missing")])
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(decl)
	assert excinfo.value.kind is ErrorKind.UNRESOLVED_BASE_TYPE

	final = build_type_descriptor(cls("Final"))
	decl = cls("Child", opts=["class", ("base", "Final")])
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(decl, generated={"Final": final})
	assert excinfo.value.kind is ErrorKind.UNRESOLVED_BASE_TYPE
	assert excinfo.value.related == (final.span,)


def _gc_impl(*members):
	return impl("Node", *members, proto=True)


def test_gc_type() -> None:
	decl = cls("Node", field("children", "PyObject *"), opts=["class", "gc", "weakref", "dict"])
	block = _gc_impl(
		method("__traverse__", param("visit", "visitproc"), param("arg", "void *"), ret="int"),
		method("__clear__"),
	)
	desc = build_type_descriptor(decl, [block])
	assert desc.flags.supports_gc
	text = desc.fragment.render()
	assert ".tp_flags = Py_TPFLAGS_DEFAULT | Py_TPFLAGS_HAVE_GC," in text
	assert ".tp_traverse = Node__traverse__slot," in text
	assert ".tp_clear = Node__clear__slot," in text
	assert ".tp_weaklistoffset = offsetof(NodeObject, weakreflist)," in text
	assert ".tp_dictoffset = offsetof(NodeObject, dict)," in text
	dealloc = text[text.index("Node__dealloc__slot(PyObject *self)"):]
	order = [
		"PyObject_GC_UnTrack(self);",
		"PyObject_ClearWeakRefs(self);",
		"Py_CLEAR(obj->inner.children);",
		"Py_CLEAR(obj->dict);",
		"Py_TYPE(self)->tp_free(self);",
	]
	positions = [dealloc.index(line) for line in order]
	assert positions == sorted(positions)


def test_gc_pair_must_be_complete() -> None:
	block = _gc_impl(method("__traverse__", param("visit", "visitproc"), param("arg", "void *"), ret="int"))
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(cls("Node"), [block])
	assert excinfo.value.kind is ErrorKind.UNSUPPORTED_SLOT_ON_TYPE
	assert "'__clear__' is missing" in excinfo.value.message


def test_gc_option_requires_the_pair() -> None:
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(cls("Node", opts=["class", "gc"]))
	assert excinfo.value.kind is ErrorKind.UNSUPPORTED_SLOT_ON_TYPE


def _gc_pair():
	return _gc_impl(
		method("__traverse__", param("visit", "visitproc"), param("arg", "void *"), ret="int"),
		method("__clear__"),
	)


def _node():
	decl = cls("Node", field("children", "PyObject *"), opts=["class", "subclass", "gc"])
	return build_type_descriptor(decl, [_gc_pair()])


def test_inherited_gc_subclass_visits_its_own_references() -> None:
	decl = cls("Leaf", field("payload", "PyObject *"), opts=["class", "dict", ("base", "Node")])
	block = impl("Leaf", method("init", opts=["new"]))
	desc = build_type_descriptor(decl, [block], generated={"Node": _node()})
	assert desc.flags.supports_gc
	text = desc.fragment.render()
	assert ".tp_flags = Py_TPFLAGS_DEFAULT | Py_TPFLAGS_HAVE_GC," in text
	assert ".tp_traverse = Leaf__traverse__slot," in text
	assert ".tp_clear = Leaf__clear__slot," in text
	traverse = _function(text, "Leaf__traverse__slot(PyObject *self, visitproc visit, void *arg)")
	assert "Py_VISIT(((LeafObject *)self)->inner.payload);" in traverse
	assert "Py_VISIT(((LeafObject *)self)->dict);" in traverse
	assert "return Node_Type.tp_traverse(self, visit, arg);" in traverse
	clear = _function(text, "Leaf__clear__slot(PyObject *self)")
	assert "Py_CLEAR(((LeafObject *)self)->inner.payload);" in clear
	assert "Node_Type.tp_clear(self);" in clear


def test_inherited_gc_without_references_keeps_base_slots() -> None:
	decl = cls("Leaf", field("weight", "double"), opts=["class", ("base", "Node")])
	block = impl("Leaf", method("init", opts=["new"]))
	desc = build_type_descriptor(decl, [block], generated={"Node": _node()})
	assert desc.flags.supports_gc
	text = desc.fragment.render()
	assert "Py_TPFLAGS_HAVE_GC" not in text
	assert ".tp_traverse" not in text


def test_gc_subclass_visits_references_of_plain_base() -> None:
	base = build_type_descriptor(cls("Box", field("item", "PyObject *"), opts=["class", "subclass", "dict"]))
	assert base.object_refs == ("((BoxObject *)self)->inner.item", "((BoxObject *)self)->dict")
	decl = cls("Node", field("children", "PyObject *"), opts=["class", "gc", ("base", "Box")])
	block = impl("Node", method("init", opts=["new"]))
	desc = build_type_descriptor(decl, [block, _gc_pair()], generated={"Box": base})
	text = desc.fragment.render()
	traverse = _function(text, "Node__traverse__slot(PyObject *self, visitproc visit, void *arg)")
	assert "Py_VISIT(((NodeObject *)self)->inner.children);" in traverse
	assert "Py_VISIT(((BoxObject *)self)->inner.item);" in traverse
	assert "Py_VISIT(((BoxObject *)self)->dict);" in traverse
	assert "tp_traverse(self" not in traverse
	clear = _function(text, "Node__clear__slot(PyObject *self)")
	assert "Py_CLEAR(((BoxObject *)self)->inner.item);" in clear
	assert "Py_CLEAR(((BoxObject *)self)->dict);" in clear


def test_dealloc_declares_object_only_when_used() -> None:
	text = _point().fragment.render()
	dealloc = _function(text, "Point__dealloc__slot(PyObject *self)")
	assert "PointObject *obj" not in dealloc
	assert "Py_TYPE(self)->tp_free(self);" in dealloc
	text = _node().fragment.render()
	dealloc = _function(text, "Node__dealloc__slot(PyObject *self)")
	assert "NodeObject *obj = (NodeObject *)self;" in dealloc
	assert "Py_CLEAR(obj->inner.children);" in dealloc


def test_destructor_runs_in_dealloc_and_failed_wrap() -> None:
	block = _gc_impl(method("__dealloc__"))
	text = build_type_descriptor(cls("Node"), [block]).fragment.render()
	assert "Node_dealloc(&obj->inner);" in text
	assert "Node_dealloc(&value);" in text


def test_duplicate_member_names() -> None:
	first = method("norm", ret="double")
	second = method("length", ret="double", opts=[("name", "norm")])
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(cls("Point"), [impl("Point", first, second)])
	assert excinfo.value.kind is ErrorKind.DUPLICATE_EXPORT_NAME
	assert excinfo.value.span == second.span
	assert excinfo.value.related == (first.span,)


def test_field_accessor_clashing_with_method() -> None:
	decl = cls("Point", field("x", opts=["get"]))
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(decl, [impl("Point", method("x", ret="long"))])
	assert excinfo.value.kind is ErrorKind.DUPLICATE_EXPORT_NAME


def test_property_from_getter_and_setter_members() -> None:
	block = impl(
		"Point",
		method("get_x", ret="long", opts=["get", ("doc", "The x coordinate.")]),
		method("set_x", param("v"), opts=["set"]),
	)
	desc = build_type_descriptor(cls("Point"), [block])
	(entry,) = desc.getset
	assert (entry.name, entry.getter, entry.setter, entry.doc) == ("x", "Point__x__get", "Point__x__set", "The x coordinate.")
	text = desc.fragment.render()
	assert "\"cannot delete attribute 'x'\"" in text
	assert "Point_set_x(&((PointObject *)self)->inner, arg_v);" in text


def test_setter_must_return_void() -> None:
	block = impl("Point", method("set_x", param("v"), ret="long", opts=["set"]))
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(cls("Point"), [block])
	assert excinfo.value.kind is ErrorKind.MALFORMED_SIGNATURE


def test_object_field_accessors() -> None:
	decl = cls("Box", field("item", "PyObject *", opts=["get", "set"]))
	text = build_type_descriptor(decl).fragment.render()
	assert "return Py_NewRef(value != NULL ? value : Py_None);" in text
	assert "Py_XSETREF(((BoxObject *)self)->inner.item, Py_NewRef(value));" in text
	assert "Py_CLEAR(obj->inner.item);" in text


def test_string_fields_are_read_only() -> None:
	decl = cls("Box", field("label", "const char *", opts=["get", "set"]))
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(decl)
	assert excinfo.value.kind is ErrorKind.UNSUPPORTED_TYPE


def test_class_options() -> None:
	with pytest.raises(GenerationError) as excinfo:
		build_type_descriptor(cls("Point", opts=["class", "frozen"]))
	assert excinfo.value.kind is ErrorKind.UNRECOGNIZED_OPTION
	desc = build_type_descriptor(cls("Point", opts=["class", ("name", "Pt"), "hidden"]), module_name="geo")
	assert desc.exposed_name == "Pt"
	assert desc.hidden
	assert '.tp_name = "geo.Pt",' in desc.fragment.render()
