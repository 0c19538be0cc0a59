# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Native type catalogue and Python <-> C value conversion.

Each supported C spelling resolves to a `NativeType` which knows how to:
  - emit C that extracts a value from a borrowed `PyObject *` (arguments),
  - emit C that turns a native result into a new reference (returns),
  - validate and render default expressions,
  - model the extraction in Python (`convert_value`) so binding behavior can
    be exercised without compiling the generated code.

Integer ranges in the model assume an LP64 target (`long` is 64 bits).

Ownership conventions:
  - extracted `PyObject *` / `const char *` / class pointers are borrowed for
    the duration of the native call;
  - a native `PyObject *` result is a new reference, NULL meaning error;
  - `Self` returns a new reference to the receiver;
  - a class returned by value is copied into a freshly allocated instance.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Iterable, Mapping, Optional

from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.fragment import CWriter, c_string_literal
from cpybind.core.span import Span
from cpybind.decl import TypeRef
from cpybind.gen import names


class TypeCategory(Enum):
	INT = auto()
	FLOAT = auto()
	BOOL = auto()
	STR = auto()
	OBJECT = auto()
	CLASS_REF = auto()  # `Point *`: borrowed pointer to an instance's native value
	CLASS_VALUE = auto()  # `Point`: by-value result, wrapped into a new instance
	VOID = auto()
	SELF = auto()


@dataclass(frozen=True)
class IntSpec:
	"""How one C integer type crosses the boundary."""

	carrier: str  # C type the CPython accessor returns
	from_fn: str
	to_fn: str
	err_value: str  # accessor's error sentinel
	low: Optional[str] = None  # C range limits checked after extraction
	high: Optional[str] = None
	model_range: tuple[int, int] = (-(2**63), 2**63 - 1)


_INT_SPECS: dict[str, IntSpec] = {
	"int": IntSpec("long", "PyLong_AsLong", "PyLong_FromLong", "-1", "INT_MIN", "INT_MAX", (-(2**31), 2**31 - 1)),
	"long": IntSpec("long", "PyLong_AsLong", "PyLong_FromLong", "-1"),
	"long long": IntSpec("long long", "PyLong_AsLongLong", "PyLong_FromLongLong", "-1"),
	"unsigned int": IntSpec(
		"unsigned long", "PyLong_AsUnsignedLong", "PyLong_FromUnsignedLong", "(unsigned long)-1",
		None, "UINT_MAX", (0, 2**32 - 1),
	),
	"unsigned long": IntSpec(
		"unsigned long", "PyLong_AsUnsignedLong", "PyLong_FromUnsignedLong", "(unsigned long)-1",
		model_range=(0, 2**64 - 1),
	),
	"unsigned long long": IntSpec(
		"unsigned long long", "PyLong_AsUnsignedLongLong", "PyLong_FromUnsignedLongLong",
		"(unsigned long long)-1", model_range=(0, 2**64 - 1),
	),
	"size_t": IntSpec(
		"size_t", "PyLong_AsSize_t", "PyLong_FromSize_t", "(size_t)-1", model_range=(0, 2**64 - 1),
	),
	"Py_ssize_t": IntSpec("Py_ssize_t", "PyLong_AsSsize_t", "PyLong_FromSsize_t", "-1"),
	"int32_t": IntSpec("long", "PyLong_AsLong", "PyLong_FromLong", "-1", "INT32_MIN", "INT32_MAX", (-(2**31), 2**31 - 1)),
	"int64_t": IntSpec("long long", "PyLong_AsLongLong", "PyLong_FromLongLong", "-1"),
	"uint32_t": IntSpec(
		"unsigned long", "PyLong_AsUnsignedLong", "PyLong_FromUnsignedLong", "(unsigned long)-1",
		None, "UINT32_MAX", (0, 2**32 - 1),
	),
	"uint64_t": IntSpec(
		"unsigned long long", "PyLong_AsUnsignedLongLong", "PyLong_FromUnsignedLongLong",
		"(unsigned long long)-1", model_range=(0, 2**64 - 1),
	),
}

_SCALARS: dict[str, TypeCategory] = {
	"double": TypeCategory.FLOAT,
	"float": TypeCategory.FLOAT,
	"bool": TypeCategory.BOOL,
	"const char *": TypeCategory.STR,
	"PyObject *": TypeCategory.OBJECT,
	"void": TypeCategory.VOID,
	"Self": TypeCategory.SELF,
}


@dataclass(frozen=True)
class NativeType:
	"""A resolved native type."""

	spelling: str
	category: TypeCategory
	int_spec: Optional[IntSpec] = None
	class_name: Optional[str] = None

	@property
	def py_name(self) -> str:
		"""Python-facing type name used in error messages."""
		if self.category is TypeCategory.INT:
			return "int"
		if self.category is TypeCategory.FLOAT:
			return "float"
		if self.category is TypeCategory.BOOL:
			return "bool"
		if self.category is TypeCategory.STR:
			return "str"
		if self.class_name is not None:
			return self.class_name
		return "object"


class TypeResolver:
	"""
	Resolves TypeRefs for one module.

	`class_names` are the classes declared in the module (pointer and by-value
	uses resolve to them); `aliases` come from GeneratorConfig.type_aliases.
	`derived` names the classes with a generated base; they cannot be returned
	by value because the wrap helper only fills their own part.
	"""

	def __init__(
		self,
		class_names: Iterable[str] = (),
		aliases: Mapping[str, str] | None = None,
		derived: Iterable[str] = (),
	) -> None:
		self._classes = set(class_names)
		self._derived = set(derived)
		self._aliases = {TypeRef.of(k).spelling: TypeRef.of(v).spelling for k, v in (aliases or {}).items()}

	def resolve(self, ty: TypeRef, *, span: Span = Span(), usage: str = "param") -> NativeType:
		"""
		Resolve a type for `usage` ("param", "return" or "field").

		Raises GenerationError(UnsupportedType) for unknown spellings and for
		spellings that are not valid in the requested position.
		"""
		spelling = self._aliases.get(ty.spelling, ty.spelling)
		nt = self._lookup(spelling)
		if nt is None:
			raise GenerationError(ErrorKind.UNSUPPORTED_TYPE, f"unsupported native type '{ty.spelling}'", span=span)
		if usage != "return" and nt.category in (TypeCategory.VOID, TypeCategory.SELF, TypeCategory.CLASS_VALUE):
			raise GenerationError(
				ErrorKind.UNSUPPORTED_TYPE,
				f"type '{ty.spelling}' is only valid as a return type",
				span=span,
			)
		if usage == "return" and nt.category is TypeCategory.CLASS_VALUE and nt.class_name in self._derived:
			raise GenerationError(
				ErrorKind.UNSUPPORTED_TYPE,
				f"cannot return subclass '{ty.spelling}' by value; its base part would be left uninitialized",
				span=span,
			)
		if usage == "return" and nt.category is TypeCategory.CLASS_REF:
			raise GenerationError(
				ErrorKind.UNSUPPORTED_TYPE,
				f"cannot return borrowed pointer '{ty.spelling}'; return '{nt.class_name}' by value or PyObject *",
				span=span,
			)
		if usage == "field" and nt.category is TypeCategory.CLASS_REF:
			raise GenerationError(
				ErrorKind.UNSUPPORTED_TYPE,
				f"field of pointer type '{ty.spelling}' cannot be exposed",
				span=span,
			)
		return nt

	def _lookup(self, spelling: str) -> Optional[NativeType]:
		spec = _INT_SPECS.get(spelling)
		if spec is not None:
			return NativeType(spelling, TypeCategory.INT, int_spec=spec)
		cat = _SCALARS.get(spelling)
		if cat is not None:
			return NativeType(spelling, cat)
		ref = TypeRef(spelling)
		if ref.is_pointer and ref.pointee in self._classes:
			return NativeType(spelling, TypeCategory.CLASS_REF, class_name=ref.pointee)
		if spelling in self._classes:
			return NativeType(spelling, TypeCategory.CLASS_VALUE, class_name=spelling)
		return None


# Default expressions ---------------------------------------------------------

_CONST_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_INT_LIT_RE = re.compile(r"^[+-]?(0[xX][0-9a-fA-F]+|\d+)[uUlL]*$")
_FLOAT_LIT_RE = re.compile(r"^[+-]?(\d+\.?\d*([eE][+-]?\d+)?|\.\d+([eE][+-]?\d+)?)[fF]?$")
_STR_LIT_RE = re.compile(r'^"([^"\\]|\\.)*"$')


def check_default(nt: NativeType, expr: str, *, param: str, span: Span = Span()) -> None:
	"""Raise InvalidDefaultExpression unless `expr` is a valid default for `nt`."""
	text = expr.strip()
	ok = False
	if not text:
		ok = False
	elif nt.category is TypeCategory.INT:
		ok = bool(_INT_LIT_RE.match(text) or _CONST_RE.match(text))
	elif nt.category is TypeCategory.FLOAT:
		ok = bool(_FLOAT_LIT_RE.match(text) or _CONST_RE.match(text))
	elif nt.category is TypeCategory.BOOL:
		ok = text in ("true", "false", "0", "1") or bool(_CONST_RE.match(text))
	elif nt.category is TypeCategory.STR:
		ok = text == "NULL" or bool(_STR_LIT_RE.match(text) or _CONST_RE.match(text))
	elif nt.category is TypeCategory.OBJECT:
		ok = text in ("NULL", "None")
	elif nt.category is TypeCategory.CLASS_REF:
		ok = text == "NULL"
	if not ok:
		raise GenerationError(
			ErrorKind.INVALID_DEFAULT_EXPRESSION,
			f"invalid default '{expr}' for parameter '{param}' of type {nt.spelling}",
			span=span,
		)


def default_c_expr(nt: NativeType, expr: str) -> str:
	text = expr.strip()
	if nt.category is TypeCategory.OBJECT and text == "None":
		return "Py_None"
	return text


def default_py_text(nt: NativeType, expr: str) -> str:
	"""Render a default for a `__text_signature__` (must parse as Python)."""
	text = expr.strip()
	if text in ("NULL", "None"):
		return "None"
	if nt.category is TypeCategory.BOOL:
		if text in ("true", "1"):
			return "True"
		if text in ("false", "0"):
			return "False"
		return "..."
	if nt.category is TypeCategory.INT and _INT_LIT_RE.match(text):
		return text.rstrip("uUlL")
	if nt.category is TypeCategory.FLOAT and _FLOAT_LIT_RE.match(text):
		return text.rstrip("fF")
	if nt.category is TypeCategory.STR and _STR_LIT_RE.match(text):
		return text
	return "..."


# C emission -----------------------------------------------------------------

def emit_from_python(w: CWriter, nt: NativeType, src: str, dst: str, *, arg: str, fail: str) -> None:
	"""
	Emit C extracting `src` (borrowed PyObject *) into the local `dst`.

	On failure a Python exception is set and control jumps to `fail`.
	"""
	cat = nt.category
	if cat is TypeCategory.INT:
		spec = nt.int_spec
		assert spec is not None
		with w.block():
			w.line(f"{spec.carrier} tmp = {spec.from_fn}({src});")
			w.line(f"if (tmp == {spec.err_value} && PyErr_Occurred())")
			with w.indented():
				w.goto(fail)
			checks = []
			if spec.low is not None:
				checks.append(f"tmp < {spec.low}")
			if spec.high is not None:
				checks.append(f"tmp > {spec.high}")
			if checks:
				with w.block(f"if ({' || '.join(checks)})"):
					msg = c_string_literal(f"argument '{arg}' out of range for {nt.spelling}")
					w.line(f"PyErr_SetString(PyExc_OverflowError, {msg});")
					w.goto(fail)
			w.line(f"{dst} = ({nt.spelling})tmp;")
		return
	if cat is TypeCategory.FLOAT:
		with w.block():
			w.line(f"double tmp = PyFloat_AsDouble({src});")
			w.line("if (tmp == -1.0 && PyErr_Occurred())")
			with w.indented():
				w.goto(fail)
			w.line(f"{dst} = ({nt.spelling})tmp;")
		return
	if cat is TypeCategory.BOOL:
		_emit_type_check(w, f"PyBool_Check({src})", src, arg, "bool", fail)
		w.line(f"{dst} = ({src} == Py_True);")
		return
	if cat is TypeCategory.STR:
		_emit_type_check(w, f"PyUnicode_Check({src})", src, arg, "str", fail)
		w.line(f"{dst} = PyUnicode_AsUTF8({src});")
		w.line(f"if ({dst} == NULL)")
		with w.indented():
			w.goto(fail)
		return
	if cat is TypeCategory.OBJECT:
		w.line(f"{dst} = {src};")
		return
	if cat is TypeCategory.CLASS_REF:
		cls = nt.class_name
		assert cls is not None
		_emit_type_check(w, f"PyObject_TypeCheck({src}, &{names.type_object(cls)})", src, arg, cls, fail)
		w.line(f"{dst} = &(({names.object_struct(cls)} *){src})->inner;")
		return
	raise AssertionError(f"no argument conversion for category {cat}")


def _emit_type_check(w: CWriter, cond: str, src: str, arg: str, expected: str, fail: str) -> None:
	with w.block(f"if (!{cond})"):
		fmt = c_string_literal(f"argument '{arg}' must be {expected}, not %.200s")
		w.line(f"PyErr_Format(PyExc_TypeError, {fmt}, Py_TYPE({src})->tp_name);")
		w.goto(fail)


def emit_to_python(w: CWriter, nt: NativeType, value: str, dst: str, *, self_expr: str = "self", owner: str = "") -> None:
	"""
	Emit C storing a new reference for native `value` into `dst`.

	`dst` is NULL with an exception set on failure.
	"""
	cat = nt.category
	if cat is TypeCategory.INT:
		assert nt.int_spec is not None
		w.line(f"{dst} = {nt.int_spec.to_fn}({value});")
	elif cat is TypeCategory.FLOAT:
		w.line(f"{dst} = PyFloat_FromDouble((double){value});")
	elif cat is TypeCategory.BOOL:
		w.line(f"{dst} = PyBool_FromLong({value});")
	elif cat is TypeCategory.STR:
		w.line(f"{dst} = {value} == NULL ? Py_NewRef(Py_None) : PyUnicode_FromString({value});")
	elif cat is TypeCategory.OBJECT:
		w.line(f"{dst} = {value};")
		with w.block(f"if ({dst} == NULL && !PyErr_Occurred())"):
			msg = c_string_literal(f"{owner} returned NULL without setting an exception")
			w.line(f"PyErr_SetString(PyExc_SystemError, {msg});")
	elif cat is TypeCategory.VOID:
		w.line(f"{dst} = Py_NewRef(Py_None);")
	elif cat is TypeCategory.SELF:
		w.line(f"{dst} = Py_NewRef({self_expr});")
	elif cat is TypeCategory.CLASS_VALUE:
		assert nt.class_name is not None
		w.line(f"{dst} = {names.wrap_fn(nt.class_name)}({value});")
	else:
		raise AssertionError(f"no result conversion for category {cat}")


def returns_value(nt: NativeType) -> bool:
	"""Whether the native call produces a value that must be captured."""
	return nt.category not in (TypeCategory.VOID, TypeCategory.SELF)


# Python-side model ----------------------------------------------------------

def convert_value(nt: NativeType, value: Any, *, arg: str) -> Any:
	"""
	Model the C extraction of `value` for parameter `arg`.

	Returns the value the native function would observe; raises the same
	exception type the generated C raises. Class references match on the
	Python type name, which stands in for the runtime type check.
	"""
	cat = nt.category
	if cat is TypeCategory.INT:
		assert nt.int_spec is not None
		if not isinstance(value, int):
			raise TypeError(f"'{type(value).__name__}' object cannot be interpreted as an integer")
		value = int(value)
		low, high = nt.int_spec.model_range
		if not low <= value <= high:
			raise OverflowError(f"argument '{arg}' out of range for {nt.spelling}")
		return value
	if cat is TypeCategory.FLOAT:
		if isinstance(value, (int, float)):
			return float(value)
		raise TypeError(f"must be real number, not {type(value).__name__}")
	if cat is TypeCategory.BOOL:
		if not isinstance(value, bool):
			raise TypeError(f"argument '{arg}' must be bool, not {type(value).__name__}")
		return value
	if cat is TypeCategory.STR:
		if not isinstance(value, str):
			raise TypeError(f"argument '{arg}' must be str, not {type(value).__name__}")
		return value
	if cat is TypeCategory.OBJECT:
		return value
	if cat is TypeCategory.CLASS_REF:
		if type(value).__name__ != nt.class_name:
			raise TypeError(f"argument '{arg}' must be {nt.class_name}, not {type(value).__name__}")
		return value
	raise AssertionError(f"no argument conversion for category {cat}")


__all__ = [
	"TypeCategory",
	"IntSpec",
	"NativeType",
	"TypeResolver",
	"check_default",
	"default_c_expr",
	"default_py_text",
	"emit_from_python",
	"emit_to_python",
	"returns_value",
	"convert_value",
]
