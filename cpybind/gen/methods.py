# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Method, accessor and constructor wrappers.

Every wrapper follows the same layout:

	locals (converted arguments, collectors, raw binder slots, result)
	bind + convert            -> goto done on failure
	{ native call; result conversion }
done:
	release collectors
	return result

Native receivers are passed as `&((<Class>Object *)self)->inner`; class
methods receive the `PyTypeObject *`; static and module functions get no
receiver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.fragment import CWriter, c_decl, c_string_literal
from cpybind.core.span import Span
from cpybind.decl import FieldDecl, Receiver, find_option
from cpybind.gen import names
from cpybind.gen.binder import (
	BinderPlan,
	CallConvention,
	ConventionKind,
	build_binder,
	derive_convention,
)
from cpybind.gen.classify import (
	ClassifiedMember,
	ClassMethod,
	Getter,
	InstanceMethod,
	Setter,
	StaticMethod,
)
from cpybind.gen.convert import (
	NativeType,
	TypeCategory,
	TypeResolver,
	emit_from_python,
	emit_to_python,
	returns_value,
)
from cpybind.gen.signature import build_signature
from cpybind.gen.slot_defs import SlotKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassLayout:
	"""Instance layout facts shared by every adapter of one class."""

	name: str  # native struct name
	exposed: str  # Python-visible name
	owned_fields: Tuple[str, ...] = ()  # `PyObject *` fields released by dealloc/clear
	has_dict: bool = False
	has_weakref: bool = False
	base: Optional[str] = None  # native name of a generated base class
	base_gc: bool = False  # base has traverse/clear adapters to chain to
	drop_symbol: Optional[str] = None  # native destructor, if any
	ancestors: Tuple[str, ...] = ()  # generated bases, nearest first
	# `PyObject *` slots of non-GC bases; a GC subclass visits them itself
	inherited_refs: Tuple[str, ...] = ()

	@property
	def object_struct(self) -> str:
		return names.object_struct(self.name)

	@property
	def type_object(self) -> str:
		return names.type_object(self.name)

	def inner(self, obj: str = "self") -> str:
		return f"&(({self.object_struct} *){obj})->inner"

	def field(self, field_name: str, obj: str = "self") -> str:
		return f"(({self.object_struct} *){obj})->inner.{field_name}"

	def base_inners(self, obj: str = "obj") -> List[str]:
		"""`&obj->base.inner`, `&obj->base.base.inner`, ... for every ancestor."""
		return [f"&{obj}->{'base.' * depth}inner" for depth in range(1, len(self.ancestors) + 1)]


@dataclass(frozen=True)
class Adapter:
	"""One generated C function."""

	name: str
	text: str


@dataclass(frozen=True)
class MethodEntry:
	name: str
	adapter: str
	flags: str
	doc: Optional[str]
	span: Span = Span()


@dataclass(frozen=True)
class GetSetEntry:
	name: str
	getter: Optional[str]
	setter: Optional[str]
	doc: Optional[str]
	span: Span = Span()


def display_name(owner: Optional[str], member: str) -> str:
	"""Name used in runtime error messages: `Point.scale()` / `dist()`."""
	if owner is None:
		return f"{member}()"
	return f"{owner}.{member}()"


def build_member_plan(
	member: ClassifiedMember,
	resolver: TypeResolver,
	*,
	display: str,
	prefix: str,
	constructor: bool = False,
	slot: Optional[SlotKind] = None,
	convention: Optional[CallConvention] = None,
) -> BinderPlan:
	decl = member.decl
	sig = build_signature(decl.params, owner=display, options=decl.options, span=decl.span)
	if convention is None:
		conv_opt = member.option("convention")
		convention = derive_convention(
			sig,
			constructor=constructor,
			slot=slot,
			override=(conv_opt.value or "") if conv_opt is not None else None,
			owner=display,
			span=decl.span,
		)
	return build_binder(sig, convention, resolver, owner=display, prefix=prefix, span=decl.span)


def resolve_return(member: ClassifiedMember, resolver: TypeResolver, *, allow_self: bool) -> NativeType:
	ret = resolver.resolve(member.decl.return_type, span=member.span, usage="return")
	if ret.category is TypeCategory.SELF and not allow_self:
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE,
			f"'{member.decl.name}': only members with a 'self' receiver can return Self",
			span=member.span,
		)
	return ret


def emit_call(
	w: CWriter,
	symbol: str,
	args: Sequence[str],
	ret: NativeType,
	*,
	result: str,
	raises: bool,
	display: str,
	self_expr: str = "self",
	fail: str = "done",
) -> None:
	"""Emit the native call and the conversion of its result into `result`."""
	call = f"{symbol}({', '.join(args)})"
	with w.block():
		if returns_value(ret):
			w.line(f"{c_decl(ret.spelling, 'rv')} = {call};")
		else:
			w.line(f"{call};")
		if raises:
			if ret.category is TypeCategory.OBJECT:
				with w.block("if (PyErr_Occurred())"):
					w.line("Py_XDECREF(rv);")
					w.goto(fail)
			else:
				w.line("if (PyErr_Occurred())")
				with w.indented():
					w.goto(fail)
		emit_to_python(w, ret, "rv", result, self_expr=self_expr, owner=display)


# Methods and module functions -----------------------------------------------

def _c_params(convention: CallConvention, self_param: str) -> str:
	if convention.kind is ConventionKind.NO_ARGS:
		return f"{self_param}, PyObject *Py_UNUSED(ignored)"
	if convention.kind is ConventionKind.SINGLE_ARG:
		return f"{self_param}, PyObject *arg"
	return f"{self_param}, PyObject *args, PyObject *kwargs"


def emit_method(
	member: ClassifiedMember,
	plan: BinderPlan,
	ret: NativeType,
	*,
	layout: Optional[ClassLayout],
	display: str,
) -> Tuple[Adapter, str]:
	"""
	Emit the wrapper of an instance/static/class method or a module function.

	Returns the adapter and its `PyMethodDef` flags.
	"""
	role = member.role
	owner = layout.name if layout is not None else None
	flags = plan.convention.meth_flags
	if isinstance(role, InstanceMethod):
		assert layout is not None
		receiver: Optional[str] = layout.inner("self")
		self_param = "PyObject *self"
	elif isinstance(role, ClassMethod):
		receiver = "(PyTypeObject *)type"
		self_param = "PyObject *type"
		flags += " | METH_CLASS"
	elif isinstance(role, StaticMethod):
		receiver = None
		self_param = "PyObject *Py_UNUSED(module)" if layout is None else "PyObject *Py_UNUSED(self)"
		if layout is not None:
			flags += " | METH_STATIC"
	else:
		raise AssertionError(f"not a method role: {role!r}")

	name = names.adapter(owner, member.decl.name, "meth")
	w = CWriter()
	w.line("static PyObject *")
	w.line(f"{name}({_c_params(plan.convention, self_param)})")
	with w.block():
		plan.emit_locals(w)
		w.line("PyObject *result = NULL;")
		w.line()
		plan.emit_bind(w, args="arg" if plan.convention.kind is ConventionKind.SINGLE_ARG else "args")
		call_args = ([receiver] if receiver is not None else []) + plan.call_args()
		emit_call(w, member.native_symbol, call_args, ret, result="result", raises=member.raises, display=display)
		w.line()
		w.label("done")
		plan.emit_cleanup(w)
		w.line("return result;")
	return Adapter(name, w.render()), flags


# Constructor ----------------------------------------------------------------

def emit_constructor(
	member: ClassifiedMember,
	plan: BinderPlan,
	ret: NativeType,
	*,
	layout: ClassLayout,
	display: str,
) -> Adapter:
	"""
	Emit the `tp_new` adapter.

	Factory style (`fn new(...) -> Class`): the native value is built first
	and copied into a fresh instance; if allocation fails the value is
	dropped. Initializer style (`fn new(self, ...)`): the instance is
	allocated zeroed and the native initializer fills `inner` in place.

	A subclass constructor must be initializer style: after its own `inner`
	it receives a pointer to each base's `inner`, nearest base first, and
	fills those too.
	"""
	decl = member.decl
	init_style = decl.receiver is Receiver.SELF
	if init_style and ret.category is not TypeCategory.VOID:
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE,
			f"{display}: initializer-style constructor must return void",
			span=member.span,
		)
	if not init_style and (ret.category is not TypeCategory.CLASS_VALUE or ret.class_name != layout.name):
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE,
			f"{display}: constructor must return '{layout.name}' by value (or take 'self' and return void)",
			span=member.span,
		)
	if not init_style and layout.ancestors:
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE,
			f"{display}: a subclass constructor must take 'self' and initialize its base part as well",
			span=member.span,
		)

	name = names.adapter(layout.name, "new", "slot")
	struct = layout.object_struct
	w = CWriter()
	w.line("static PyObject *")
	w.line(f"{name}(PyTypeObject *subtype, PyObject *args, PyObject *kwargs)")
	with w.block():
		plan.emit_locals(w)
		w.line(f"{struct} *obj = NULL;")
		w.line()
		plan.emit_bind(w)
		args = plan.call_args()
		if init_style:
			w.line(f"obj = ({struct} *)subtype->tp_alloc(subtype, 0);")
			w.line("if (obj == NULL)")
			with w.indented():
				w.goto("done")
			w.line(f"{member.native_symbol}({', '.join(['&obj->inner'] + layout.base_inners() + args)});")
			if member.raises:
				with w.block("if (PyErr_Occurred())"):
					w.line("Py_CLEAR(obj);")
					w.goto("done")
		else:
			with w.block():
				w.line(f"{layout.name} value = {member.native_symbol}({', '.join(args)});")
				if member.raises:
					w.line("if (PyErr_Occurred())")
					with w.indented():
						w.goto("done")
				w.line(f"obj = ({struct} *)subtype->tp_alloc(subtype, 0);")
				with w.block("if (obj == NULL)"):
					if layout.drop_symbol is not None:
						w.line(f"{layout.drop_symbol}(&value);")
					w.goto("done")
				w.line("obj->inner = value;")
		w.line()
		w.label("done")
		plan.emit_cleanup(w)
		w.line("return (PyObject *)obj;")
	logger.debug("%s: %s-style constructor", layout.name, "init" if init_style else "factory")
	return Adapter(name, w.render())


# Properties -----------------------------------------------------------------

def _emit_delete_guard(w: CWriter, prop: str) -> None:
	with w.block("if (value == NULL)"):
		msg = c_string_literal(f"cannot delete attribute '{prop}'")
		w.line(f"PyErr_SetString(PyExc_AttributeError, {msg});")
		w.line("return -1;")


def emit_getter(member: ClassifiedMember, ret: NativeType, *, layout: ClassLayout, display: str) -> Adapter:
	assert isinstance(member.role, Getter)
	if ret.category is TypeCategory.VOID:
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE, f"{display}: getter must return a value", span=member.span
		)
	name = names.adapter(layout.name, member.role.name, "get")
	w = CWriter()
	w.line("static PyObject *")
	w.line(f"{name}(PyObject *self, void *Py_UNUSED(closure))")
	with w.block():
		w.line("PyObject *result = NULL;")
		w.line()
		emit_call(
			w, member.native_symbol, [layout.inner("self")], ret,
			result="result", raises=member.raises, display=display,
		)
		w.line()
		w.label("done")
		w.line("return result;")
	return Adapter(name, w.render())


def emit_setter(member: ClassifiedMember, plan: BinderPlan, ret: NativeType, *, layout: ClassLayout, display: str) -> Adapter:
	assert isinstance(member.role, Setter)
	if ret.category is not TypeCategory.VOID:
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE, f"{display}: setter must return void", span=member.span
		)
	name = names.adapter(layout.name, member.role.name, "set")
	w = CWriter()
	w.line("static int")
	w.line(f"{name}(PyObject *self, PyObject *value, void *Py_UNUSED(closure))")
	with w.block():
		plan.emit_locals(w)
		w.line()
		_emit_delete_guard(w, member.role.name)
		plan.emit_convert(w, ["value"], fail="fail")
		w.line(f"{member.native_symbol}({', '.join([layout.inner('self')] + plan.call_args())});")
		if member.raises:
			w.line("if (PyErr_Occurred())")
			with w.indented():
				w.goto("fail")
		w.line("return 0;")
		if w.jumps_to("fail"):
			w.line()
			w.label("fail")
			w.line("return -1;")
	return Adapter(name, w.render())


def setter_plan(member: ClassifiedMember, resolver: TypeResolver, *, display: str, prefix: str) -> BinderPlan:
	"""Setters convert their single value like a one-parameter slot."""
	return build_member_plan(
		member, resolver, display=display, prefix=prefix, convention=CallConvention(ConventionKind.SLOT)
	)


def emit_field_getter(fld: FieldDecl, nt: NativeType, prop: str, *, layout: ClassLayout) -> Adapter:
	name = names.adapter(layout.name, prop, "fget")
	access = layout.field(fld.name)
	w = CWriter()
	w.line("static PyObject *")
	w.line(f"{name}(PyObject *self, void *Py_UNUSED(closure))")
	with w.block():
		if nt.category is TypeCategory.OBJECT:
			# Owned field: NULL reads as None.
			w.line(f"PyObject *value = {access};")
			w.line("return Py_NewRef(value != NULL ? value : Py_None);")
		else:
			w.line("PyObject *result;")
			emit_to_python(w, nt, access, "result")
			w.line("return result;")
	return Adapter(name, w.render())


def emit_field_setter(fld: FieldDecl, nt: NativeType, prop: str, *, layout: ClassLayout) -> Adapter:
	if nt.category is TypeCategory.STR:
		# The UTF-8 buffer belongs to the str object and would dangle.
		raise GenerationError(
			ErrorKind.UNSUPPORTED_TYPE,
			f"{layout.name}.{fld.name}: fields of type '{nt.spelling}' cannot be assigned",
			span=fld.span,
		)
	name = names.adapter(layout.name, prop, "fset")
	access = layout.field(fld.name)
	w = CWriter()
	w.line("static int")
	w.line(f"{name}(PyObject *self, PyObject *value, void *Py_UNUSED(closure))")
	with w.block():
		if nt.category is not TypeCategory.OBJECT:
			w.line(f"{c_decl(nt.spelling, 'converted')};")
			w.line()
		_emit_delete_guard(w, prop)
		if nt.category is TypeCategory.OBJECT:
			w.line(f"Py_XSETREF({access}, Py_NewRef(value));")
		else:
			emit_from_python(w, nt, "value", "converted", arg=prop, fail="fail")
			w.line(f"{access} = converted;")
		w.line("return 0;")
		if w.jumps_to("fail"):
			w.line()
			w.label("fail")
			w.line("return -1;")
	return Adapter(name, w.render())


# Tables ---------------------------------------------------------------------

def _doc_literal(doc: Optional[str]) -> str:
	return c_string_literal(doc) if doc else "NULL"


def render_method_table(table: str, entries: Sequence[MethodEntry]) -> str:
	w = CWriter()
	w.line(f"static PyMethodDef {table}[] = {{")
	with w.indented():
		for e in entries:
			w.line(f"{{{c_string_literal(e.name)}, (PyCFunction)(void (*)(void)){e.adapter}, {e.flags}, {_doc_literal(e.doc)}}},")
		w.line("{NULL, NULL, 0, NULL},")
	w.line("};")
	return w.render()


def render_getset_table(table: str, entries: Sequence[GetSetEntry]) -> str:
	w = CWriter()
	w.line(f"static PyGetSetDef {table}[] = {{")
	with w.indented():
		for e in entries:
			getter = e.getter or "NULL"
			setter = e.setter or "NULL"
			w.line(f"{{{c_string_literal(e.name)}, {getter}, {setter}, {_doc_literal(e.doc)}, NULL}},")
		w.line("{NULL, NULL, NULL, NULL, NULL},")
	w.line("};")
	return w.render()


def field_props(fld: FieldDecl) -> Optional[Tuple[str, bool, bool]]:
	"""(exposed name, readable, writable) for a field's accessor options, or None."""
	get_opt = find_option(fld.options, "get")
	set_opt = find_option(fld.options, "set")
	if get_opt is None and set_opt is None:
		return None
	name_opt = find_option(fld.options, "name")
	exposed = name_opt.value if name_opt is not None and name_opt.value else fld.name
	return exposed, get_opt is not None, set_opt is not None


__all__ = [
	"ClassLayout",
	"Adapter",
	"MethodEntry",
	"GetSetEntry",
	"display_name",
	"build_member_plan",
	"resolve_return",
	"emit_call",
	"emit_method",
	"emit_constructor",
	"emit_getter",
	"emit_setter",
	"setter_plan",
	"emit_field_getter",
	"emit_field_setter",
	"render_method_table",
	"render_getset_table",
	"field_props",
]
