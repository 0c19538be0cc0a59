# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Type-descriptor generator.

One class declaration plus all of its impl blocks become a `TypeDescriptor`:
the object struct embedding the native value, the by-value wrap helper,
tp_dealloc, method and getset tables, the number/sequence/mapping
sub-tables, and the statically initialized `PyTypeObject`.

Object layout:

	typedef struct {
		PyObject_HEAD              (or the base's object struct)
		<Class> inner;
		PyObject *weakreflist;     (weakref, first class in the chain only)
		PyObject *dict;            (dict, first class in the chain only)
	} <Class>Object;
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from cpybind.core.config import GeneratorConfig
from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.fragment import CodeFragment, CWriter, c_string_literal
from cpybind.core.span import Span
from cpybind.decl import PYOBJECT, ClassDecl, FieldDecl, ImplDecl, find_option
from cpybind.gen import names
from cpybind.gen.classify import (
	ClassifiedMember,
	ClassMethod,
	Constructor,
	Getter,
	InstanceMethod,
	Setter,
	StaticMethod,
	check_options,
	classify_impl,
)
from cpybind.gen.convert import TypeResolver
from cpybind.gen.methods import (
	ClassLayout,
	GetSetEntry,
	MethodEntry,
	build_member_plan,
	display_name,
	emit_field_getter,
	emit_field_setter,
	emit_getter,
	emit_method,
	emit_setter,
	field_props,
	render_getset_table,
	render_method_table,
	resolve_return,
	setter_plan,
)
from cpybind.gen.slot_defs import SlotKind
from cpybind.gen.slots import SlotTable, build_slot_table
from cpybind.gen.textsig import member_doc

logger = logging.getLogger(__name__)

CLASS_OPTIONS = frozenset(
	{"class", "name", "base", "subclass", "gc", "weakref", "dict", "text_signature", "doc", "hidden"}
)
FIELD_OPTIONS = frozenset({"get", "set", "name", "doc"})

_SUB_TABLES = (
	("nb", "PyNumberMethods", "as_number"),
	("sq", "PySequenceMethods", "as_sequence"),
	("mp", "PyMappingMethods", "as_mapping"),
)


@dataclass(frozen=True)
class TypeFlags:
	supports_gc: bool = False  # own traverse/clear pair, or inherited from the base
	is_base_type: bool = False
	weakref: bool = False
	dict: bool = False


@dataclass(frozen=True)
class TypeDescriptor:
	name: str
	exposed_name: str
	base: Optional[str]  # native name of the base descriptor; None for `object`
	methods: Tuple[MethodEntry, ...]
	slots: SlotTable
	fields: Tuple[FieldDecl, ...]
	getset: Tuple[GetSetEntry, ...]
	flags: TypeFlags
	fragment: CodeFragment
	hidden: bool = False
	span: Span = Span()
	ancestors: Tuple[str, ...] = ()  # generated bases, nearest first
	# every `PyObject *` slot of the full instance, as C lvalues over `self`
	object_refs: Tuple[str, ...] = ()

	@property
	def type_object(self) -> str:
		return names.type_object(self.name)

	def method(self, name: str) -> Optional[MethodEntry]:
		for entry in self.methods:
			if entry.name == name:
				return entry
		return None


def _option_value(cls: ClassDecl, key: str) -> Optional[str]:
	opt = find_option(cls.options, key)
	return opt.value if opt is not None else None


def _resolve_base(cls: ClassDecl, generated: Mapping[str, TypeDescriptor]) -> Optional[TypeDescriptor]:
	opt = find_option(cls.options, "base")
	if opt is None or opt.value in (None, "", "object"):
		return None
	span = opt.span if opt.span.is_known() else cls.span
	base = generated.get(opt.value)
	if base is None:
		raise GenerationError(
			ErrorKind.UNRESOLVED_BASE_TYPE,
			f"{cls.name}: base '{opt.value}' is not a generated class",
			span=span,
		)
	if not base.flags.is_base_type:
		raise GenerationError(
			ErrorKind.UNRESOLVED_BASE_TYPE,
			f"{cls.name}: base '{opt.value}' is not declared 'subclass'",
			span=span,
			related=(base.span,),
		)
	return base


def _check_gc(cls: ClassDecl, slots: SlotTable) -> bool:
	traverse = slots.get(SlotKind.TRAVERSE)
	clear = slots.get(SlotKind.CLEAR)
	if (traverse is None) != (clear is None):
		present = traverse or clear
		assert present is not None
		missing = "__clear__" if clear is None else "__traverse__"
		raise GenerationError(
			ErrorKind.UNSUPPORTED_SLOT_ON_TYPE,
			f"{cls.name}: GC traverse and clear must be implemented together ('{missing}' is missing)",
			span=present.span,
		)
	if find_option(cls.options, "gc") is not None and traverse is None:
		raise GenerationError(
			ErrorKind.UNSUPPORTED_SLOT_ON_TYPE,
			f"{cls.name}: 'gc' requires '__traverse__' and '__clear__'",
			span=cls.span,
		)
	return traverse is not None


class _ExportNames:
	"""Exposed member names of one type; a second use of a name is an error."""

	def __init__(self, owner: str) -> None:
		self.owner = owner
		self._seen: Dict[str, Span] = {}

	def add(self, name: str, span: Span) -> None:
		first = self._seen.get(name)
		if first is not None:
			raise GenerationError(
				ErrorKind.DUPLICATE_EXPORT_NAME,
				f"{self.owner}: member name '{name}' is exported twice",
				span=span,
				related=(first,),
			)
		self._seen[name] = span


def build_type_descriptor(
	cls: ClassDecl,
	impls: Sequence[ImplDecl] = (),
	*,
	generated: Mapping[str, TypeDescriptor] | None = None,
	resolver: TypeResolver | None = None,
	config: GeneratorConfig = GeneratorConfig(),
	module_name: str = "module",
) -> TypeDescriptor:
	"""
	Build the descriptor for `cls`.

	`generated` maps native class names to descriptors already built in this
	module; the base class, if any, must be among them.
	"""
	generated = generated or {}
	check_options(cls.options, CLASS_OPTIONS, what=f"class '{cls.name}'", span=cls.span)
	exposed = _option_value(cls, "name") or cls.name
	base = _resolve_base(cls, generated)
	if resolver is None:
		derived = [name for name, desc in generated.items() if desc.base is not None]
		if base is not None:
			derived.append(cls.name)
		resolver = TypeResolver([cls.name, *generated], config.type_aliases, derived=derived)

	members: List[ClassifiedMember] = []
	for impl in impls:
		members.extend(classify_impl(impl, config=config))
	owned: List[str] = []
	for fld in cls.fields:
		check_options(fld.options, FIELD_OPTIONS, what=f"field '{cls.name}.{fld.name}'", span=fld.span)
		if fld.type == PYOBJECT:
			owned.append(fld.name)

	base_flags = base.flags if base is not None else TypeFlags()
	want_weakref = find_option(cls.options, "weakref") is not None
	want_dict = find_option(cls.options, "dict") is not None
	has_dict = want_dict and not base_flags.dict
	struct = names.object_struct(cls.name)
	own_refs = [f"(({struct} *)self)->inner.{name}" for name in owned]
	if has_dict:
		own_refs.append(f"(({struct} *)self)->dict")
	base_refs = base.object_refs if base is not None else ()
	layout = ClassLayout(
		name=cls.name,
		exposed=exposed,
		owned_fields=tuple(owned),
		has_dict=has_dict,
		has_weakref=want_weakref and not base_flags.weakref,
		base=base.name if base is not None else None,
		base_gc=base_flags.supports_gc,
		ancestors=(base.name, *base.ancestors) if base is not None else (),
		inherited_refs=() if base_flags.supports_gc else base_refs,
	)
	prefix = config.runtime_prefix
	slots = build_slot_table(members, layout=layout, resolver=resolver, prefix=prefix)
	own_gc = _check_gc(cls, slots)
	if base is not None and SlotKind.CONSTRUCT not in slots:
		raise GenerationError(
			ErrorKind.UNRESOLVED_BASE_TYPE,
			f"{cls.name}: subclass of '{base.name}' must declare its own constructor to initialize the base part",
			span=cls.span,
			related=(base.span,),
		)
	layout = dataclasses.replace(layout, drop_symbol=slots.drop_symbol)
	flags = TypeFlags(
		supports_gc=own_gc or base_flags.supports_gc,
		is_base_type=find_option(cls.options, "subclass") is not None,
		weakref=want_weakref or base_flags.weakref,
		dict=want_dict or base_flags.dict,
	)
	# GC inherited without an own pair: the subclass still visits its own slots.
	chained_gc = flags.supports_gc and not own_gc and bool(own_refs)

	exports = _ExportNames(cls.name)
	fragment = CodeFragment()
	adapters: List[str] = []
	methods: List[MethodEntry] = []
	for m in members:
		if not isinstance(m.role, (InstanceMethod, StaticMethod, ClassMethod)):
			continue
		display = display_name(exposed, m.exposed_name)
		plan = build_member_plan(m, resolver, display=display, prefix=prefix)
		ret = resolve_return(m, resolver, allow_self=isinstance(m.role, InstanceMethod))
		adapter, meth_flags = emit_method(m, plan, ret, layout=layout, display=display)
		receiver = {InstanceMethod: "$self", ClassMethod: "$type"}.get(type(m.role))
		doc_opt = m.option("doc")
		sig_opt = m.option("text_signature")
		doc = member_doc(
			m.exposed_name,
			plan,
			receiver=receiver,
			override=sig_opt.value if sig_opt is not None else None,
			doc=doc_opt.value if doc_opt is not None else None,
			auto=config.auto_text_signature,
		)
		exports.add(m.exposed_name, m.span)
		adapters.append(adapter.text)
		methods.append(MethodEntry(m.exposed_name, adapter.name, meth_flags, doc, m.span))

	getset = _build_getset(cls, members, layout, resolver, prefix, exports, adapters)

	class_doc = _class_doc(cls, exposed, members, resolver, config)
	_render(fragment, cls, layout, base, slots, flags, methods, getset, adapters, class_doc, module_name, chained_gc)
	logger.debug(
		"type %s: %d method(s), %d getset(s), %d slot(s), gc=%s",
		cls.name, len(methods), len(getset), len(slots), flags.supports_gc,
	)
	return TypeDescriptor(
		name=cls.name,
		exposed_name=exposed,
		base=base.name if base is not None else None,
		methods=tuple(methods),
		slots=slots,
		fields=cls.fields,
		getset=tuple(getset),
		flags=flags,
		fragment=fragment,
		hidden=find_option(cls.options, "hidden") is not None,
		span=cls.span,
		ancestors=layout.ancestors,
		object_refs=(*own_refs, *base_refs),
	)


def _build_getset(
	cls: ClassDecl,
	members: Sequence[ClassifiedMember],
	layout: ClassLayout,
	resolver: TypeResolver,
	prefix: str,
	exports: _ExportNames,
	adapters: List[str],
) -> List[GetSetEntry]:
	# property name -> [getter, setter, doc, span]
	props: Dict[str, list] = {}
	order: List[str] = []

	def slot(name: str, span: Span) -> list:
		if name not in props:
			props[name] = [None, None, None, span]
			order.append(name)
			exports.add(name, span)
		return props[name]

	for m in members:
		role = m.role
		if not isinstance(role, (Getter, Setter)):
			continue
		display = display_name(layout.exposed, role.name)
		entry = slot(role.name, m.span)
		index = 0 if isinstance(role, Getter) else 1
		if entry[index] is not None:
			kind = "getter" if index == 0 else "setter"
			raise GenerationError(
				ErrorKind.DUPLICATE_EXPORT_NAME,
				f"{cls.name}: property '{role.name}' has more than one {kind}",
				span=m.span,
				related=(entry[3],),
			)
		if isinstance(role, Getter):
			ret = resolve_return(m, resolver, allow_self=True)
			adapter = emit_getter(m, ret, layout=layout, display=display)
		else:
			plan = setter_plan(m, resolver, display=display, prefix=prefix)
			ret = resolve_return(m, resolver, allow_self=False)
			adapter = emit_setter(m, plan, ret, layout=layout, display=display)
		entry[index] = adapter.name
		doc_opt = m.option("doc")
		if doc_opt is not None and entry[2] is None:
			entry[2] = doc_opt.value
		adapters.append(adapter.text)

	for fld in cls.fields:
		spec = field_props(fld)
		if spec is None:
			continue
		prop, readable, writable = spec
		nt = resolver.resolve(fld.type, span=fld.span, usage="field")
		if prop in props:
			raise GenerationError(
				ErrorKind.DUPLICATE_EXPORT_NAME,
				f"{cls.name}: field accessor '{prop}' clashes with another member",
				span=fld.span,
				related=(props[prop][3],),
			)
		entry = slot(prop, fld.span)
		if readable:
			adapter = emit_field_getter(fld, nt, prop, layout=layout)
			entry[0] = adapter.name
			adapters.append(adapter.text)
		if writable:
			adapter = emit_field_setter(fld, nt, prop, layout=layout)
			entry[1] = adapter.name
			adapters.append(adapter.text)
		doc_opt = find_option(fld.options, "doc")
		if doc_opt is not None:
			entry[2] = doc_opt.value

	return [GetSetEntry(name, *props[name]) for name in order]


def _class_doc(
	cls: ClassDecl,
	exposed: str,
	members: Sequence[ClassifiedMember],
	resolver: TypeResolver,
	config: GeneratorConfig,
) -> Optional[str]:
	doc = _option_value(cls, "doc")
	override = find_option(cls.options, "text_signature")
	ctor = next((m for m in members if isinstance(m.role, Constructor)), None)
	plan = None
	if ctor is not None and override is None and config.auto_text_signature:
		plan = build_member_plan(
			ctor, resolver, display=display_name(exposed, "__new__"), prefix=config.runtime_prefix, constructor=True
		)
	if override is None and plan is None:
		return doc
	return member_doc(
		exposed,
		plan,
		receiver=None,
		override=override.value if override is not None else None,
		doc=doc,
		auto=True,
	)


def _render_struct(layout: ClassLayout, base: Optional[TypeDescriptor]) -> str:
	w = CWriter()
	with w.block("typedef struct", trailer=f" {layout.object_struct};"):
		if base is not None:
			w.line(f"{names.object_struct(base.name)} base;")
		else:
			w.line("PyObject_HEAD")
		w.line(f"{layout.name} inner;")
		if layout.has_weakref:
			w.line("PyObject *weakreflist;")
		if layout.has_dict:
			w.line("PyObject *dict;")
	return w.render()


def _render_wrap(layout: ClassLayout) -> str:
	w = CWriter()
	w.line("static inline PyObject *")
	w.line(f"{names.wrap_fn(layout.name)}({layout.name} value)")
	with w.block():
		w.line(
			f"{layout.object_struct} *obj = ({layout.object_struct} *)"
			f"{layout.type_object}.tp_alloc(&{layout.type_object}, 0);"
		)
		with w.block("if (obj == NULL)"):
			if layout.drop_symbol is not None:
				w.line(f"{layout.drop_symbol}(&value);")
			w.line("return NULL;")
		w.line("obj->inner = value;")
		w.line("return (PyObject *)obj;")
	return w.render()


def _render_dealloc(layout: ClassLayout, flags: TypeFlags) -> str:
	w = CWriter()
	w.line("static void")
	w.line(f"{names.adapter(layout.name, 'dealloc', 'slot')}(PyObject *self)")
	with w.block():
		if layout.drop_symbol is not None or layout.owned_fields or layout.has_dict:
			w.line(f"{layout.object_struct} *obj = ({layout.object_struct} *)self;")
			w.line()
		if flags.supports_gc:
			w.line("PyObject_GC_UnTrack(self);")
		if flags.weakref:
			w.line("PyObject_ClearWeakRefs(self);")
		if layout.drop_symbol is not None:
			w.line(f"{layout.drop_symbol}(&obj->inner);")
		for fld in layout.owned_fields:
			w.line(f"Py_CLEAR(obj->inner.{fld});")
		if layout.has_dict:
			w.line("Py_CLEAR(obj->dict);")
		if layout.base is not None:
			w.line(f"{names.adapter(layout.base, 'dealloc', 'slot')}(self);")
		else:
			w.line("Py_TYPE(self)->tp_free(self);")
	return w.render()


def _render_chained_gc(layout: ClassLayout) -> List[Tuple[str, str, str]]:
	"""traverse/clear for a subclass that inherits GC but owns references."""
	assert layout.base is not None
	base_type = names.type_object(layout.base)
	refs = [layout.field(fld) for fld in layout.owned_fields]
	if layout.has_dict:
		refs.append(f"(({layout.object_struct} *)self)->dict")

	traverse = names.adapter(layout.name, "traverse", "slot")
	w = CWriter()
	w.line("static int")
	w.line(f"{traverse}(PyObject *self, visitproc visit, void *arg)")
	with w.block():
		for ref in refs:
			w.line(f"Py_VISIT({ref});")
		w.line(f"return {base_type}.tp_traverse(self, visit, arg);")
	traverse_text = w.render()

	clear = names.adapter(layout.name, "clear", "slot")
	w = CWriter()
	w.line("static int")
	w.line(f"{clear}(PyObject *self)")
	with w.block():
		for ref in refs:
			w.line(f"Py_CLEAR({ref});")
		w.line(f"if ({base_type}.tp_clear != NULL)")
		with w.indented():
			w.line(f"{base_type}.tp_clear(self);")
		w.line("return 0;")
	return [("tp_traverse", traverse, traverse_text), ("tp_clear", clear, w.render())]


def _render(
	fragment: CodeFragment,
	cls: ClassDecl,
	layout: ClassLayout,
	base: Optional[TypeDescriptor],
	slots: SlotTable,
	flags: TypeFlags,
	methods: Sequence[MethodEntry],
	getset: Sequence[GetSetEntry],
	adapters: Sequence[str],
	class_doc: Optional[str],
	module_name: str,
	chained_gc: bool = False,
) -> None:
	name = cls.name
	fragment.declare(_render_struct(layout, base))
	fragment.declare(f"static PyTypeObject {layout.type_object};")
	if base is None:
		# subclasses are never returned by value
		fragment.declare(_render_wrap(layout))

	fragment.define(_render_dealloc(layout, flags))
	for text in slots.definitions():
		fragment.define(text)
	tp_slots = slots.fields("tp")
	if chained_gc:
		for fld, adapter, text in _render_chained_gc(layout):
			fragment.define(text)
			tp_slots.append((fld, adapter))
	for text in adapters:
		fragment.define(text)
	if methods:
		fragment.define(render_method_table(f"{name}_methods", methods))
	if getset:
		fragment.define(render_getset_table(f"{name}_getset", getset))

	sub_refs: List[Tuple[str, str]] = []
	for table, c_type, suffix in _SUB_TABLES:
		entries = slots.fields(table)
		if not entries:
			continue
		w = CWriter()
		with w.block(f"static {c_type} {name}_{suffix} =", trailer=";"):
			for fld, adapter in entries:
				w.line(f".{fld} = {adapter},")
		fragment.define(w.render())
		sub_refs.append((f"tp_{suffix}", f"&{name}_{suffix}"))

	tp_flags = ["Py_TPFLAGS_DEFAULT"]
	if flags.is_base_type:
		tp_flags.append("Py_TPFLAGS_BASETYPE")
	if slots.supports_gc or chained_gc:
		# A subclass without its own pair or owned references inherits GC from its base.
		tp_flags.append("Py_TPFLAGS_HAVE_GC")

	w = CWriter()
	with w.block(f"static PyTypeObject {layout.type_object} =", trailer=";"):
		w.line("PyVarObject_HEAD_INIT(NULL, 0)")
		w.line(f".tp_name = {c_string_literal(f'{module_name}.{layout.exposed}')},")
		w.line(f".tp_basicsize = sizeof({layout.object_struct}),")
		w.line(".tp_itemsize = 0,")
		w.line(f".tp_dealloc = {names.adapter(name, 'dealloc', 'slot')},")
		w.line(f".tp_flags = {' | '.join(tp_flags)},")
		if class_doc:
			w.line(f".tp_doc = {c_string_literal(class_doc)},")
		if base is not None:
			w.line(f".tp_base = &{base.type_object},")
		if layout.has_weakref:
			w.line(f".tp_weaklistoffset = offsetof({layout.object_struct}, weakreflist),")
		if layout.has_dict:
			w.line(f".tp_dictoffset = offsetof({layout.object_struct}, dict),")
		if methods:
			w.line(f".tp_methods = {name}_methods,")
		if getset:
			w.line(f".tp_getset = {name}_getset,")
		for fld, ref in sub_refs:
			w.line(f".{fld} = {ref},")
		for fld, adapter in tp_slots:
			w.line(f".{fld} = {adapter},")
	fragment.define(w.render())


__all__ = [
	"CLASS_OPTIONS",
	"FIELD_OPTIONS",
	"TypeFlags",
	"TypeDescriptor",
	"build_type_descriptor",
]
