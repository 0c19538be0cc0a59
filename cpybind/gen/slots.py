# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Slot-table generator.

Turns the `SlotImpl` members of one class into C adapters whose signatures
match the CPython slot they fill, re-encoding native results into the
runtime's conventions (see `Shape` in slot_defs). At most one adapter exists
per slot kind; set-item and del-item share a single `mp_ass_subscript`
adapter.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.fragment import CWriter, c_decl, c_string_literal
from cpybind.core.span import Span
from cpybind.decl import ParamMarker, TypeRef
from cpybind.gen import names
from cpybind.gen.binder import BinderPlan
from cpybind.gen.classify import ClassifiedMember, Constructor, SlotImpl
from cpybind.gen.convert import NativeType, TypeCategory, TypeResolver, default_c_expr, emit_from_python
from cpybind.gen.methods import (
	ClassLayout,
	build_member_plan,
	display_name,
	emit_call,
	emit_constructor,
	resolve_return,
)
from cpybind.gen.slot_defs import SLOT_SPECS, Shape, SlotKind, SlotSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotAdapter:
	kind: SlotKind
	spec: SlotSpec
	adapter: str
	# None when the function is emitted elsewhere (tp_dealloc is always
	# generated by the type descriptor).
	text: Optional[str]
	span: Span = Span()


@dataclass(frozen=True)
class SlotTable:
	adapters: Mapping[SlotKind, SlotAdapter]
	drop_symbol: Optional[str] = None

	def __contains__(self, kind: object) -> bool:
		return kind in self.adapters

	def __len__(self) -> int:
		return len(self.adapters)

	def get(self, kind: SlotKind) -> Optional[SlotAdapter]:
		return self.adapters.get(kind)

	@property
	def supports_gc(self) -> bool:
		return SlotKind.TRAVERSE in self.adapters and SlotKind.CLEAR in self.adapters

	def fields(self, table: str) -> List[Tuple[str, str]]:
		"""(field, adapter) pairs for one table ("tp", "nb", "sq", "mp"), deduplicated."""
		out: List[Tuple[str, str]] = []
		seen: set[str] = set()
		for kind in SlotKind:
			entry = self.adapters.get(kind)
			if entry is None or entry.text is None or entry.spec.table != table:
				continue
			if entry.spec.field in seen:
				continue
			seen.add(entry.spec.field)
			out.append((entry.spec.field, entry.adapter))
		return out

	def definitions(self) -> Iterator[str]:
		seen: set[str] = set()
		for kind in SlotKind:
			entry = self.adapters.get(kind)
			if entry is None or entry.text is None or entry.adapter in seen:
				continue
			seen.add(entry.adapter)
			yield entry.text


def slot_kind_of(member: ClassifiedMember) -> Optional[SlotKind]:
	if isinstance(member.role, Constructor):
		return SlotKind.CONSTRUCT
	if isinstance(member.role, SlotImpl):
		return member.role.kind
	return None


def _collect(members: Sequence[ClassifiedMember], cls: str) -> Dict[SlotKind, ClassifiedMember]:
	by_kind: Dict[SlotKind, ClassifiedMember] = {}
	for member in members:
		kind = slot_kind_of(member)
		if kind is None:
			continue
		first = by_kind.get(kind)
		if first is not None:
			raise GenerationError(
				ErrorKind.DUPLICATE_SLOT,
				f"{cls}: slot '{kind.value}' is implemented by both '{first.decl.name}' and '{member.decl.name}'",
				span=member.span,
				related=(first.span,),
			)
		by_kind[kind] = member
	return by_kind


def _malformed(member: ClassifiedMember, message: str) -> GenerationError:
	return GenerationError(ErrorKind.MALFORMED_SIGNATURE, message, span=member.span)


def _check_arity(member: ClassifiedMember, spec: SlotSpec, count: int, display: str) -> None:
	if spec.max_params is None:
		return
	if not spec.min_params <= count <= spec.max_params:
		if spec.min_params == spec.max_params:
			expected = str(spec.min_params)
		else:
			expected = f"{spec.min_params} to {spec.max_params}"
		raise _malformed(member, f"{display}: slot '{spec.kind.value}' takes {expected} parameter(s) after self, got {count}")


def _check_return(member: ClassifiedMember, spec: SlotSpec, ret: NativeType, display: str) -> None:
	if spec.returns and ret.category.name not in spec.returns:
		allowed = ", ".join(sorted(c.lower() for c in spec.returns))
		raise _malformed(
			member, f"{display}: slot '{spec.kind.value}' cannot return '{ret.spelling}' (expected {allowed})"
		)


def _is_signed(nt: NativeType) -> bool:
	return nt.int_spec is not None and nt.int_spec.model_range[0] < 0


class _SlotBuilder:
	"""Emits the adapters of one class."""

	def __init__(self, layout: ClassLayout, resolver: TypeResolver, prefix: str) -> None:
		self.layout = layout
		self.resolver = resolver
		self.prefix = prefix

	def display(self, spec: SlotSpec) -> str:
		return display_name(self.layout.exposed, spec.dunder)

	def adapter_name(self, kind: SlotKind) -> str:
		return names.adapter(self.layout.name, kind.value, "slot")

	def plan(self, member: ClassifiedMember, spec: SlotSpec) -> BinderPlan:
		return build_member_plan(
			member, self.resolver, display=self.display(spec), prefix=self.prefix, slot=spec.kind
		)

	def ret(self, member: ClassifiedMember, spec: SlotSpec) -> NativeType:
		ret = resolve_return(member, self.resolver, allow_self=True)
		_check_return(member, spec, ret, self.display(spec))
		return ret

	def receiver_call(self, member: ClassifiedMember, plan: Optional[BinderPlan] = None) -> List[str]:
		return [self.layout.inner("self")] + (plan.call_args() if plan is not None else [])

	# ---- shapes -------------------------------------------------------------

	def unary(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), display)
		ret = self.ret(member, spec)
		w = CWriter()
		w.line("static PyObject *")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self)")
		with w.block():
			w.line("PyObject *result = NULL;")
			w.line()
			emit_call(
				w, member.native_symbol, self.receiver_call(member), ret,
				result="result", raises=member.raises, display=display,
			)
			w.line()
			w.label("done")
			w.line("return result;")
		return w.render()

	def iternext(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), display)
		self.ret(member, spec)
		w = CWriter()
		w.line("static PyObject *")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self)")
		with w.block():
			# NULL without an exception set signals exhaustion.
			w.line(f"PyObject *rv = {member.native_symbol}({self.layout.inner('self')});")
			if member.raises:
				w.line("if (rv != NULL && PyErr_Occurred())")
				with w.indented():
					w.line("Py_CLEAR(rv);")
			w.line("return rv;")
		return w.render()

	def hash(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), self.display(spec))
		self.ret(member, spec)
		w = CWriter()
		w.line("static Py_hash_t")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self)")
		with w.block():
			w.line(f"Py_hash_t h = (Py_hash_t){member.native_symbol}({self.layout.inner('self')});")
			if member.raises:
				w.line("if (PyErr_Occurred())")
				with w.indented():
					w.line("return -1;")
			w.line("if (h == -1)")
			with w.indented():
				w.line("h = -2;")
			w.line("return h;")
		return w.render()

	def _emit_notimplemented(self, w: CWriter) -> None:
		if not w.jumps_to("notimpl"):
			return
		w.label("notimpl")
		# Only a failed type match means "not my operand".
		w.line("if (!PyErr_ExceptionMatches(PyExc_TypeError))")
		with w.indented():
			w.line("return NULL;")
		w.line("PyErr_Clear();")
		w.line("Py_RETURN_NOTIMPLEMENTED;")

	def richcompare(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), display)
		ret = self.ret(member, spec)
		other, op = plan.bound
		if op.native.category is not TypeCategory.INT:
			raise _malformed(member, f"{display}: comparison operator parameter '{op.param.name}' must be an int")
		w = CWriter()
		w.line("static PyObject *")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self, PyObject *other, int op)")
		with w.block():
			plan.emit_locals(w)
			w.line("PyObject *result = NULL;")
			w.line()
			emit_from_python(w, other.native, "other", other.local, arg=other.param.name, fail="notimpl")
			w.line(f"{op.local} = ({op.native.spelling})op;")
			emit_call(
				w, member.native_symbol, self.receiver_call(member, plan), ret,
				result="result", raises=member.raises, display=display,
			)
			w.line()
			w.label("done")
			w.line("return result;")
			self._emit_notimplemented(w)
		return w.render()

	def call(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		ret = self.ret(member, spec)
		w = CWriter()
		w.line("static PyObject *")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self, PyObject *args, PyObject *kwargs)")
		with w.block():
			plan.emit_locals(w)
			w.line("PyObject *result = NULL;")
			w.line()
			plan.emit_bind(w)
			emit_call(
				w, member.native_symbol, self.receiver_call(member, plan), ret,
				result="result", raises=member.raises, display=display,
			)
			w.line()
			w.label("done")
			plan.emit_cleanup(w)
			w.line("return result;")
		return w.render()

	def length(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), self.display(spec))
		self.ret(member, spec)
		w = CWriter()
		w.line("static Py_ssize_t")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self)")
		with w.block():
			w.line(f"Py_ssize_t n = (Py_ssize_t){member.native_symbol}({self.layout.inner('self')});")
			if member.raises:
				w.line("if (PyErr_Occurred())")
				with w.indented():
					w.line("return -1;")
			with w.block("if (n < 0)"):
				w.line("if (!PyErr_Occurred())")
				with w.indented():
					w.line('PyErr_SetString(PyExc_ValueError, "__len__() should return >= 0");')
				w.line("return -1;")
			w.line("return n;")
		return w.render()

	def getitem(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), display)
		ret = self.ret(member, spec)
		w = CWriter()
		w.line("static PyObject *")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self, PyObject *key)")
		with w.block():
			plan.emit_locals(w)
			w.line("PyObject *result = NULL;")
			w.line()
			plan.emit_convert(w, ["key"], fail="done")
			emit_call(
				w, member.native_symbol, self.receiver_call(member, plan), ret,
				result="result", raises=member.raises, display=display,
			)
			w.line()
			w.label("done")
			w.line("return result;")
		return w.render()

	def ass_subscript(self, setter: Optional[ClassifiedMember], deleter: Optional[ClassifiedMember]) -> Tuple[str, str]:
		"""One `mp_ass_subscript` adapter; value == NULL dispatches to the deleter."""
		name = names.adapter(self.layout.name, "ass_subscript", "slot")
		halves = []
		for member, kind, sources in ((deleter, SlotKind.DELITEM, ["key"]), (setter, SlotKind.SETITEM, ["key", "value"])):
			if member is None:
				halves.append(None)
				continue
			spec = SLOT_SPECS[kind]
			plan = self.plan(member, spec)
			_check_arity(member, spec, len(plan.bound), self.display(spec))
			self.ret(member, spec)
			halves.append((member, plan, sources))
		w = CWriter()
		w.line("static int")
		w.line(f"{name}(PyObject *self, PyObject *key, PyObject *value)")
		with w.block():
			with w.block("if (value == NULL)"):
				self._emit_ass_half(w, halves[0], "deletion")
			self._emit_ass_half(w, halves[1], "assignment")
			if w.jumps_to("fail"):
				w.line()
				w.label("fail")
				w.line("return -1;")
		return name, w.render()

	def _emit_ass_half(self, w: CWriter, half, what: str) -> None:
		if half is None:
			msg = c_string_literal(f"{self.layout.exposed} does not support item {what}")
			w.line(f"PyErr_SetString(PyExc_NotImplementedError, {msg});")
			w.line("return -1;")
			return
		member, plan, sources = half
		with w.block():
			plan.emit_locals(w)
			w.line()
			plan.emit_convert(w, sources, fail="fail")
			w.line(f"{member.native_symbol}({', '.join(self.receiver_call(member, plan))});")
			if member.raises:
				w.line("if (PyErr_Occurred())")
				with w.indented():
					w.goto("fail")
			w.line("return 0;")

	def predicate(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), display)
		ret = self.ret(member, spec)
		w = CWriter()
		w.line("static int")
		if spec.kind is SlotKind.CONTAINS:
			w.line(f"{self.adapter_name(spec.kind)}(PyObject *self, PyObject *item)")
		else:
			w.line(f"{self.adapter_name(spec.kind)}(PyObject *self)")
		with w.block():
			plan.emit_locals(w)
			if plan.bound:
				w.line()
			plan.emit_convert(w, ["item"], fail="fail")
			with w.block():
				w.line(f"{c_decl(ret.spelling, 'rv')} = {member.native_symbol}({', '.join(self.receiver_call(member, plan))});")
				if member.raises:
					w.line("if (PyErr_Occurred())")
					with w.indented():
						w.goto("fail")
				if _is_signed(ret):
					with w.block("if (rv < 0)"):
						msg = c_string_literal(f"{display} returned a negative status without setting an exception")
						w.line("if (!PyErr_Occurred())")
						with w.indented():
							w.line(f"PyErr_SetString(PyExc_SystemError, {msg});")
						w.line("return -1;")
				w.line("return rv ? 1 : 0;")
			if w.jumps_to("fail"):
				w.line()
				w.label("fail")
				w.line("return -1;")
		return w.render()

	def binary_number(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), display)
		ret = self.ret(member, spec)
		other = plan.bound[0]
		w = CWriter()
		w.line("static PyObject *")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self, PyObject *other)")
		with w.block():
			plan.emit_locals(w)
			w.line("PyObject *result = NULL;")
			w.line()
			self._emit_self_check(w)
			emit_from_python(w, other.native, "other", other.local, arg=other.param.name, fail="notimpl")
			emit_call(
				w, member.native_symbol, self.receiver_call(member, plan), ret,
				result="result", raises=member.raises, display=display,
			)
			w.line()
			w.label("done")
			w.line("return result;")
			self._emit_notimplemented(w)
		return w.render()

	def _emit_self_check(self, w: CWriter) -> None:
		# Reflected calls put a foreign object on the left.
		w.line(f"if (!PyObject_TypeCheck(self, &{self.layout.type_object}))")
		with w.indented():
			w.line("Py_RETURN_NOTIMPLEMENTED;")

	def ternary_number(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), display)
		ret = self.ret(member, spec)
		w = CWriter()
		w.line("static PyObject *")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self, PyObject *other, PyObject *mod)")
		with w.block():
			plan.emit_locals(w)
			w.line("PyObject *result = NULL;")
			w.line()
			self._emit_self_check(w)
			other = plan.bound[0]
			if len(plan.bound) == 1:
				w.line("if (mod != Py_None)")
				with w.indented():
					w.line("Py_RETURN_NOTIMPLEMENTED;")
			emit_from_python(w, other.native, "other", other.local, arg=other.param.name, fail="notimpl")
			if len(plan.bound) == 2:
				modulus = plan.bound[1]
				if modulus.param.is_required:
					emit_from_python(w, modulus.native, "mod", modulus.local, arg=modulus.param.name, fail="notimpl")
				else:
					w.line("if (mod == Py_None)")
					with w.indented():
						w.line(f"{modulus.local} = {default_c_expr(modulus.native, modulus.param.default or '')};")
					w.line("else")
					with w.block():
						emit_from_python(w, modulus.native, "mod", modulus.local, arg=modulus.param.name, fail="notimpl")
			emit_call(
				w, member.native_symbol, self.receiver_call(member, plan), ret,
				result="result", raises=member.raises, display=display,
			)
			w.line()
			w.label("done")
			w.line("return result;")
			self._emit_notimplemented(w)
		return w.render()

	def traverse(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		display = self.display(spec)
		params = member.decl.params
		shape_ok = (
			len(params) == 2
			and all(p.marker is ParamMarker.NONE and p.default is None for p in params)
			and params[0].type == TypeRef("visitproc")
			and params[1].type == TypeRef.of("void *")
		)
		if not shape_ok:
			raise _malformed(member, f"{display}: traverse must take (self, visit: visitproc, arg: void *)")
		self.ret(member, spec)
		lay = self.layout
		w = CWriter()
		w.line("static int")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self, visitproc visit, void *arg)")
		with w.block():
			for fld in lay.owned_fields:
				w.line(f"Py_VISIT({lay.field(fld)});")
			if lay.has_dict:
				w.line(f"Py_VISIT((({lay.object_struct} *)self)->dict);")
			for ref in lay.inherited_refs:
				w.line(f"Py_VISIT({ref});")
			if lay.base_gc and lay.base is not None:
				base_type = names.type_object(lay.base)
				with w.block(f"if ({base_type}.tp_traverse != NULL)"):
					w.line(f"int err = {base_type}.tp_traverse(self, visit, arg);")
					w.line("if (err)")
					with w.indented():
						w.line("return err;")
			w.line(f"return {member.native_symbol}({lay.inner('self')}, visit, arg);")
		return w.render()

	def clear(self, member: ClassifiedMember, spec: SlotSpec) -> str:
		plan = self.plan(member, spec)
		_check_arity(member, spec, len(plan.bound), self.display(spec))
		self.ret(member, spec)
		lay = self.layout
		w = CWriter()
		w.line("static int")
		w.line(f"{self.adapter_name(spec.kind)}(PyObject *self)")
		with w.block():
			w.line(f"{member.native_symbol}({lay.inner('self')});")
			for fld in lay.owned_fields:
				w.line(f"Py_CLEAR({lay.field(fld)});")
			if lay.has_dict:
				w.line(f"Py_CLEAR((({lay.object_struct} *)self)->dict);")
			for ref in lay.inherited_refs:
				w.line(f"Py_CLEAR({ref});")
			if lay.base_gc and lay.base is not None:
				base_type = names.type_object(lay.base)
				w.line(f"if ({base_type}.tp_clear != NULL)")
				with w.indented():
					w.line(f"{base_type}.tp_clear(self);")
			w.line("return 0;")
		return w.render()


def build_slot_table(
	members: Sequence[ClassifiedMember],
	*,
	layout: ClassLayout,
	resolver: TypeResolver,
	prefix: str = "cpyb",
) -> SlotTable:
	"""
	Build one adapter per implemented slot kind of `layout.name`.

	Raises:
	  GenerationError(DuplicateSlot) when two members map to one kind (both
	  spans reported), UnsupportedSlotOnType for `next` without `iter`, and
	  MalformedSignature when a member does not fit its slot.
	"""
	by_kind = _collect(members, layout.name)
	if SlotKind.NEXT in by_kind and SlotKind.ITER not in by_kind:
		raise GenerationError(
			ErrorKind.UNSUPPORTED_SLOT_ON_TYPE,
			f"{layout.name}: '__next__' requires '__iter__'",
			span=by_kind[SlotKind.NEXT].span,
		)
	drop = by_kind.get(SlotKind.DESTRUCT)
	if drop is not None:
		spec = SLOT_SPECS[SlotKind.DESTRUCT]
		display = display_name(layout.exposed, spec.dunder)
		if drop.decl.params:
			raise _malformed(drop, f"{display}: destructor takes only 'self'")
		ret = resolve_return(drop, resolver, allow_self=False)
		_check_return(drop, spec, ret, display)
		layout = dataclasses.replace(layout, drop_symbol=drop.native_symbol)

	builder = _SlotBuilder(layout, resolver, prefix)
	out: Dict[SlotKind, SlotAdapter] = {}
	for kind in SlotKind:
		member = by_kind.get(kind)
		if member is None:
			continue
		spec = SLOT_SPECS[kind]
		shape = spec.shape
		name = builder.adapter_name(kind)
		text: Optional[str]
		if shape is Shape.CONSTRUCT:
			display = builder.display(spec)
			plan = build_member_plan(member, resolver, display=display, prefix=prefix, constructor=True)
			ret = resolve_return(member, resolver, allow_self=False)
			adapter = emit_constructor(member, plan, ret, layout=layout, display=display)
			name, text = adapter.name, adapter.text
		elif shape is Shape.DESTRUCT:
			name, text = names.adapter(layout.name, "dealloc", "slot"), None
		elif shape is Shape.ASS_SUBSCRIPT:
			# SETITEM sorts first; a lone deleter builds the shared adapter itself.
			if kind is SlotKind.DELITEM and SlotKind.SETITEM in out:
				out[kind] = dataclasses.replace(out[SlotKind.SETITEM], kind=kind, spec=spec, span=member.span)
				continue
			name, text = builder.ass_subscript(by_kind.get(SlotKind.SETITEM), by_kind.get(SlotKind.DELITEM))
		elif shape is Shape.UNARY_OBJECT:
			text = builder.unary(member, spec)
		elif shape is Shape.ITERNEXT:
			text = builder.iternext(member, spec)
		elif shape is Shape.HASH:
			text = builder.hash(member, spec)
		elif shape is Shape.RICHCOMPARE:
			text = builder.richcompare(member, spec)
		elif shape is Shape.CALL:
			text = builder.call(member, spec)
		elif shape is Shape.LENGTH:
			text = builder.length(member, spec)
		elif shape is Shape.GETITEM:
			text = builder.getitem(member, spec)
		elif shape is Shape.PREDICATE:
			text = builder.predicate(member, spec)
		elif shape is Shape.BINARY_NUMBER:
			text = builder.binary_number(member, spec)
		elif shape is Shape.TERNARY_NUMBER:
			text = builder.ternary_number(member, spec)
		elif shape is Shape.TRAVERSE:
			text = builder.traverse(member, spec)
		elif shape is Shape.CLEAR:
			text = builder.clear(member, spec)
		else:
			raise AssertionError(f"unhandled slot shape {shape}")
		out[kind] = SlotAdapter(kind=kind, spec=spec, adapter=name, text=text, span=member.span)
	logger.debug("%s: slots [%s]", layout.name, ", ".join(k.value for k in out))
	return SlotTable(adapters=out, drop_symbol=layout.drop_symbol)


__all__ = ["SlotAdapter", "SlotTable", "slot_kind_of", "build_slot_table"]
