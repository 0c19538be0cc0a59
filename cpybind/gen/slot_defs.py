# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Protocol slot catalogue.

`SlotKind` is the closed set of foreign-runtime slots the generator can fill.
Each kind has one `SlotSpec` fixing:
  - where the adapter lands (`PyTypeObject` field or a sub-table field),
  - the member shape it wraps (parameter count after the receiver),
  - which native return categories it accepts,
  - how results and errors are encoded for the runtime.

Layout of the sub-tables follows CPython's `PyNumberMethods`,
`PySequenceMethods` and `PyMappingMethods`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, FrozenSet, Optional, Tuple


class SlotKind(Enum):
	CONSTRUCT = "construct"
	DESTRUCT = "destruct"
	REPR = "repr"
	STR = "str"
	HASH = "hash"
	RICHCOMPARE = "richcompare"
	ITER = "iter"
	NEXT = "next"
	CALL = "call"
	LENGTH = "length"
	GETITEM = "getitem"
	SETITEM = "setitem"
	DELITEM = "delitem"
	CONTAINS = "contains"
	BOOL = "bool"
	ADD = "add"
	SUB = "sub"
	MUL = "mul"
	TRUEDIV = "truediv"
	FLOORDIV = "floordiv"
	MOD = "mod"
	POW = "pow"
	LSHIFT = "lshift"
	RSHIFT = "rshift"
	AND = "and"
	OR = "or"
	XOR = "xor"
	IADD = "iadd"
	ISUB = "isub"
	IMUL = "imul"
	ITRUEDIV = "itruediv"
	IFLOORDIV = "ifloordiv"
	IMOD = "imod"
	ILSHIFT = "ilshift"
	IRSHIFT = "irshift"
	IAND = "iand"
	IOR = "ior"
	IXOR = "ixor"
	NEG = "neg"
	POS = "pos"
	ABS = "abs"
	INVERT = "invert"
	INT = "int"
	FLOAT = "float"
	INDEX = "index"
	TRAVERSE = "traverse"
	CLEAR = "clear"


class Shape(Enum):
	"""Adapter family; decides the C signature and the result encoding."""

	CONSTRUCT = auto()  # newfunc; handled by the constructor path
	DESTRUCT = auto()  # destructor; folded into tp_dealloc
	UNARY_OBJECT = auto()  # reprfunc/getiterfunc/unaryfunc: PyObject *(PyObject *)
	ITERNEXT = auto()  # iternextfunc: NULL without error means exhausted
	HASH = auto()  # hashfunc: Py_hash_t, -1 error, -1 result remapped to -2
	RICHCOMPARE = auto()  # richcmpfunc: PyObject *(PyObject *, PyObject *, int)
	CALL = auto()  # ternaryfunc with (args, kwargs)
	LENGTH = auto()  # lenfunc: Py_ssize_t, -1 error
	GETITEM = auto()  # binaryfunc: PyObject *(PyObject *, PyObject *)
	ASS_SUBSCRIPT = auto()  # objobjargproc: int, value NULL means delete
	PREDICATE = auto()  # objobjproc/inquiry returning 0/1, -1 error
	BINARY_NUMBER = auto()  # binaryfunc with NotImplemented on foreign operands
	TERNARY_NUMBER = auto()  # ternaryfunc (pow)
	TRAVERSE = auto()  # traverseproc
	CLEAR = auto()  # inquiry returning 0


@dataclass(frozen=True)
class SlotSpec:
	kind: SlotKind
	dunder: str
	table: str  # "tp", "nb", "sq" or "mp"
	field: str
	shape: Shape
	min_params: int = 0
	max_params: Optional[int] = 0  # None: any (bound through the binder)
	# Accepted native return categories (TypeCategory names); empty: any.
	returns: FrozenSet[str] = frozenset()


_OBJ_LIKE = frozenset({"OBJECT", "STR"})
_INTEGRAL = frozenset({"INT"})
_TRUTH = frozenset({"BOOL", "INT"})
_VALUE = frozenset({"INT", "FLOAT", "BOOL", "STR", "OBJECT", "CLASS_VALUE", "SELF"})


def _spec(
	kind: SlotKind,
	dunder: str,
	table: str,
	field: str,
	shape: Shape,
	min_params: int = 0,
	max_params: Optional[int] = 0,
	returns: FrozenSet[str] = frozenset(),
) -> SlotSpec:
	return SlotSpec(kind, dunder, table, field, shape, min_params, max_params, returns)


_BINARY_NUMBERS: Tuple[Tuple[SlotKind, str, str], ...] = (
	(SlotKind.ADD, "__add__", "nb_add"),
	(SlotKind.SUB, "__sub__", "nb_subtract"),
	(SlotKind.MUL, "__mul__", "nb_multiply"),
	(SlotKind.TRUEDIV, "__truediv__", "nb_true_divide"),
	(SlotKind.FLOORDIV, "__floordiv__", "nb_floor_divide"),
	(SlotKind.MOD, "__mod__", "nb_remainder"),
	(SlotKind.LSHIFT, "__lshift__", "nb_lshift"),
	(SlotKind.RSHIFT, "__rshift__", "nb_rshift"),
	(SlotKind.AND, "__and__", "nb_and"),
	(SlotKind.OR, "__or__", "nb_or"),
	(SlotKind.XOR, "__xor__", "nb_xor"),
	(SlotKind.IADD, "__iadd__", "nb_inplace_add"),
	(SlotKind.ISUB, "__isub__", "nb_inplace_subtract"),
	(SlotKind.IMUL, "__imul__", "nb_inplace_multiply"),
	(SlotKind.ITRUEDIV, "__itruediv__", "nb_inplace_true_divide"),
	(SlotKind.IFLOORDIV, "__ifloordiv__", "nb_inplace_floor_divide"),
	(SlotKind.IMOD, "__imod__", "nb_inplace_remainder"),
	(SlotKind.ILSHIFT, "__ilshift__", "nb_inplace_lshift"),
	(SlotKind.IRSHIFT, "__irshift__", "nb_inplace_rshift"),
	(SlotKind.IAND, "__iand__", "nb_inplace_and"),
	(SlotKind.IOR, "__ior__", "nb_inplace_or"),
	(SlotKind.IXOR, "__ixor__", "nb_inplace_xor"),
)

_UNARY_NUMBERS: Tuple[Tuple[SlotKind, str, str, FrozenSet[str]], ...] = (
	(SlotKind.NEG, "__neg__", "nb_negative", _VALUE),
	(SlotKind.POS, "__pos__", "nb_positive", _VALUE),
	(SlotKind.ABS, "__abs__", "nb_absolute", _VALUE),
	(SlotKind.INVERT, "__invert__", "nb_invert", _VALUE),
	(SlotKind.INT, "__int__", "nb_int", frozenset({"INT", "OBJECT"})),
	(SlotKind.FLOAT, "__float__", "nb_float", frozenset({"FLOAT", "OBJECT"})),
	(SlotKind.INDEX, "__index__", "nb_index", frozenset({"INT", "OBJECT"})),
)


def _build_catalogue() -> Dict[SlotKind, SlotSpec]:
	specs = [
		_spec(SlotKind.CONSTRUCT, "__new__", "tp", "tp_new", Shape.CONSTRUCT, 0, None),
		_spec(SlotKind.DESTRUCT, "__dealloc__", "tp", "tp_dealloc", Shape.DESTRUCT, returns=frozenset({"VOID"})),
		_spec(SlotKind.REPR, "__repr__", "tp", "tp_repr", Shape.UNARY_OBJECT, returns=_OBJ_LIKE),
		_spec(SlotKind.STR, "__str__", "tp", "tp_str", Shape.UNARY_OBJECT, returns=_OBJ_LIKE),
		_spec(SlotKind.HASH, "__hash__", "tp", "tp_hash", Shape.HASH, returns=_INTEGRAL),
		_spec(
			SlotKind.RICHCOMPARE, "__richcmp__", "tp", "tp_richcompare", Shape.RICHCOMPARE, 2, 2,
			frozenset({"BOOL", "OBJECT"}),
		),
		_spec(SlotKind.ITER, "__iter__", "tp", "tp_iter", Shape.UNARY_OBJECT, returns=frozenset({"OBJECT", "SELF"})),
		_spec(SlotKind.NEXT, "__next__", "tp", "tp_iternext", Shape.ITERNEXT, returns=frozenset({"OBJECT"})),
		_spec(SlotKind.CALL, "__call__", "tp", "tp_call", Shape.CALL, 0, None),
		_spec(SlotKind.LENGTH, "__len__", "mp", "mp_length", Shape.LENGTH, returns=_INTEGRAL),
		_spec(SlotKind.GETITEM, "__getitem__", "mp", "mp_subscript", Shape.GETITEM, 1, 1, _VALUE),
		_spec(
			SlotKind.SETITEM, "__setitem__", "mp", "mp_ass_subscript", Shape.ASS_SUBSCRIPT, 2, 2,
			frozenset({"VOID"}),
		),
		_spec(
			SlotKind.DELITEM, "__delitem__", "mp", "mp_ass_subscript", Shape.ASS_SUBSCRIPT, 1, 1,
			frozenset({"VOID"}),
		),
		_spec(SlotKind.CONTAINS, "__contains__", "sq", "sq_contains", Shape.PREDICATE, 1, 1, _TRUTH),
		_spec(SlotKind.BOOL, "__bool__", "nb", "nb_bool", Shape.PREDICATE, returns=_TRUTH),
		_spec(SlotKind.POW, "__pow__", "nb", "nb_power", Shape.TERNARY_NUMBER, 1, 2, _VALUE),
		_spec(SlotKind.TRAVERSE, "__traverse__", "tp", "tp_traverse", Shape.TRAVERSE, 2, 2, _INTEGRAL),
		_spec(SlotKind.CLEAR, "__clear__", "tp", "tp_clear", Shape.CLEAR, returns=frozenset({"VOID"})),
	]
	for kind, dunder, field in _BINARY_NUMBERS:
		specs.append(_spec(kind, dunder, "nb", field, Shape.BINARY_NUMBER, 1, 1, _VALUE))
	for kind, dunder, field, returns in _UNARY_NUMBERS:
		specs.append(_spec(kind, dunder, "nb", field, Shape.UNARY_OBJECT, returns=returns))
	catalogue = {spec.kind: spec for spec in specs}
	missing = set(SlotKind) - set(catalogue)
	if missing:
		raise AssertionError(f"slot kinds without a spec: {sorted(k.value for k in missing)}")
	return catalogue


SLOT_SPECS: Dict[SlotKind, SlotSpec] = _build_catalogue()
SLOTS_BY_DUNDER: Dict[str, SlotKind] = {spec.dunder: kind for kind, spec in SLOT_SPECS.items()}


def slot_for_dunder(name: str) -> Optional[SlotKind]:
	return SLOTS_BY_DUNDER.get(name)


def slot_from_option(value: str) -> Optional[SlotKind]:
	"""Parse a `slot = "..."` option value (kind name or dunder)."""
	try:
		return SlotKind(value)
	except ValueError:
		return SLOTS_BY_DUNDER.get(value)


__all__ = [
	"SlotKind",
	"Shape",
	"SlotSpec",
	"SLOT_SPECS",
	"SLOTS_BY_DUNDER",
	"slot_for_dunder",
	"slot_from_option",
]
