# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Argument binder: turns a raw foreign call into bound, converted native values.

A `BinderPlan` is built from a Signature and a CallConvention. It has two
faces that must agree exactly:

  - C emission: locals, the static parameter table, the call into the shared
    `<prefix>_bind_args` runtime helper, per-argument conversion with
    defaults, and collector cleanup;
  - `bind()`: a Python model of the same call-time behavior (arity, keyword
    matching, duplicates, defaults, collectors, optional conversion) raising
    the same messages as the C helper.

The runtime helper itself is emitted once per module (`runtime_prelude`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.fragment import CWriter, c_decl, c_string_literal
from cpybind.core.span import Span
from cpybind.gen.convert import (
	NativeType,
	TypeResolver,
	check_default,
	convert_value,
	default_c_expr,
	emit_from_python,
)
from cpybind.gen.signature import Parameter, Signature
from cpybind.gen.slot_defs import SlotKind

logger = logging.getLogger(__name__)


class ConventionKind(Enum):
	NO_ARGS = auto()
	SINGLE_ARG = auto()
	VARARGS_KEYWORDS = auto()
	SLOT = auto()


@dataclass(frozen=True)
class CallConvention:
	kind: ConventionKind
	slot: Optional[SlotKind] = None

	@classmethod
	def for_slot(cls, slot: SlotKind) -> "CallConvention":
		return cls(ConventionKind.SLOT, slot)

	@property
	def meth_flags(self) -> str:
		"""`PyMethodDef.ml_flags` calling-convention bits."""
		if self.kind is ConventionKind.NO_ARGS:
			return "METH_NOARGS"
		if self.kind is ConventionKind.SINGLE_ARG:
			return "METH_O"
		if self.kind is ConventionKind.VARARGS_KEYWORDS:
			return "METH_VARARGS | METH_KEYWORDS"
		raise AssertionError("slot conventions have no method flags")

	def __str__(self) -> str:
		if self.kind is ConventionKind.SLOT and self.slot is not None:
			return f"Slot({self.slot.value})"
		return self.kind.name


NO_ARGS = CallConvention(ConventionKind.NO_ARGS)
SINGLE_ARG = CallConvention(ConventionKind.SINGLE_ARG)
VARARGS_KEYWORDS = CallConvention(ConventionKind.VARARGS_KEYWORDS)

_CONVENTION_OVERRIDES = {
	"noargs": NO_ARGS,
	"o": SINGLE_ARG,
	"varargs": VARARGS_KEYWORDS,
}


def derive_convention(
	sig: Signature,
	*,
	constructor: bool = False,
	slot: Optional[SlotKind] = None,
	override: Optional[str] = None,
	owner: str = "",
	span: Span = Span(),
) -> CallConvention:
	"""
	Pick the convention for a member.

	Constructors and the call slot receive `(args, kwargs)` and bind with
	VarArgsKeywords; every other slot has a fixed native shape. Plain
	functions use NoArgs when they take nothing and VarArgsKeywords otherwise,
	unless an explicit `convention` option overrides that.
	"""
	if constructor or slot in (SlotKind.CONSTRUCT, SlotKind.CALL):
		if override is not None:
			raise GenerationError(
				ErrorKind.CONFLICTING_CLASSIFICATION,
				f"{owner}: 'convention' cannot be overridden for constructors or the call slot",
				span=span,
			)
		return VARARGS_KEYWORDS
	if slot is not None:
		return CallConvention.for_slot(slot)
	if override is not None:
		conv = _CONVENTION_OVERRIDES.get(override)
		if conv is None:
			raise GenerationError(
				ErrorKind.UNRECOGNIZED_OPTION,
				f"{owner}: unknown convention '{override}' (expected noargs, o or varargs)",
				span=span,
			)
		return conv
	return NO_ARGS if sig.is_empty() else VARARGS_KEYWORDS


@dataclass(frozen=True)
class Default:
	"""Marker for an omitted optional argument bound to its declared default."""

	expr: str


@dataclass(frozen=True)
class BoundArguments:
	values: Mapping[str, Any]
	var_positional: Optional[Tuple[Any, ...]] = None
	var_keyword: Optional[Dict[str, Any]] = None


class BindingError(TypeError):
	"""A call rejected by the binder (TypeError in the foreign runtime)."""


@dataclass(frozen=True)
class BoundParam:
	"""A bindable parameter with its resolved native type."""

	param: Parameter
	native: NativeType

	@property
	def local(self) -> str:
		return f"arg_{self.param.name}"


@dataclass(frozen=True)
class BinderPlan:
	owner: str  # display name used in messages, e.g. "Point.scale()"
	signature: Signature
	convention: CallConvention
	bound: Tuple[BoundParam, ...]
	prefix: str = "cpyb"

	# ---- shape -------------------------------------------------------------

	@property
	def positional_count(self) -> int:
		return sum(1 for b in self.bound if b.param.is_positional)

	@property
	def uses_runtime(self) -> bool:
		return self.convention.kind is ConventionKind.VARARGS_KEYWORDS

	def collector_locals(self) -> List[str]:
		out = []
		for p in (self.signature.var_positional, self.signature.var_keyword):
			if p is not None:
				out.append(f"arg_{p.name}")
		return out

	def call_args(self) -> List[str]:
		"""C argument expressions for the native call, in declaration order."""
		return [f"arg_{p.name}" for p in self.signature.params]

	# ---- model -------------------------------------------------------------

	def bind(
		self,
		args: Sequence[Any] = (),
		kwargs: Optional[Mapping[Any, Any]] = None,
		*,
		convert: bool = False,
	) -> BoundArguments:
		"""
		Bind a modeled call. Raises BindingError exactly where the emitted C
		raises TypeError; with `convert=True`, conversion errors propagate as
		the exception the C conversion raises.
		"""
		kwargs = dict(kwargs or {})
		kind = self.convention.kind
		if kind is ConventionKind.NO_ARGS:
			if args or kwargs:
				raise BindingError(f"{self.owner} takes no arguments ({len(args) + len(kwargs)} given)")
			return BoundArguments(values={})
		if kind is ConventionKind.SINGLE_ARG:
			if kwargs:
				raise BindingError(f"{self.owner} takes no keyword arguments")
			if len(args) != 1:
				raise BindingError(f"{self.owner} takes exactly one argument ({len(args)} given)")
			return self._finish({self.bound[0].param.name: args[0]}, None, None, convert)
		if kind is ConventionKind.SLOT:
			if kwargs:
				raise BindingError(f"{self.owner} takes no keyword arguments")
			if len(args) > len(self.bound):
				raise BindingError(f"{self.owner} takes at most {len(self.bound)} arguments ({len(args)} given)")
			values = {b.param.name: a for b, a in zip(self.bound, args)}
			self._check_missing(values)
			return self._finish(values, None, None, convert)
		return self._bind_varargs(args, kwargs, convert)

	def _bind_varargs(self, args: Sequence[Any], kwargs: Dict[Any, Any], convert: bool) -> BoundArguments:
		npos = self.positional_count
		has_var = self.signature.var_positional is not None
		has_varkw = self.signature.var_keyword is not None
		nargs = len(args)
		if nargs > npos and not has_var:
			raise BindingError(
				f"{self.owner} takes at most {npos} positional arguments ({nargs} given)"
			)
		values: Dict[str, Any] = {}
		for b, a in zip(self.bound[:npos], args):
			values[b.param.name] = a
		var_positional = tuple(args[npos:]) if has_var else None
		var_keyword: Optional[Dict[str, Any]] = None
		by_name = {b.param.name: b for b in self.bound}
		for key, value in kwargs.items():
			if not isinstance(key, str):
				raise BindingError("keywords must be strings")
			if key in by_name:
				if key in values:
					raise BindingError(f"{self.owner} got multiple values for argument '{key}'")
				values[key] = value
				continue
			if not has_varkw:
				raise BindingError(f"{self.owner} got an unexpected keyword argument '{key}'")
			if var_keyword is None:
				var_keyword = {}
			var_keyword[key] = value
		self._check_missing(values)
		return self._finish(values, var_positional, var_keyword, convert)

	def _check_missing(self, values: Mapping[str, Any]) -> None:
		for idx, b in enumerate(self.bound):
			if b.param.name in values or not b.param.is_required:
				continue
			if b.param.is_positional:
				raise BindingError(f"{self.owner} missing required argument '{b.param.name}' (pos {idx + 1})")
			raise BindingError(f"{self.owner} missing required keyword-only argument '{b.param.name}'")

	def _finish(
		self,
		values: Mapping[str, Any],
		var_positional: Optional[Tuple[Any, ...]],
		var_keyword: Optional[Dict[str, Any]],
		convert: bool,
	) -> BoundArguments:
		out: Dict[str, Any] = {}
		for b in self.bound:
			name = b.param.name
			if name in values:
				out[name] = convert_value(b.native, values[name], arg=name) if convert else values[name]
			elif b.param.default is not None:
				out[name] = Default(b.param.default)
		return BoundArguments(values=out, var_positional=var_positional, var_keyword=var_keyword)

	# ---- C emission --------------------------------------------------------

	def emit_locals(self, w: CWriter) -> None:
		for b in self.bound:
			w.line(f"{c_decl(b.native.spelling, b.local)};")
		for local in self.collector_locals():
			w.line(f"PyObject *{local} = NULL;")
		if self.uses_runtime and self.bound:
			init = ", ".join("NULL" for _ in self.bound)
			w.line(f"PyObject *raw[{len(self.bound)}] = {{{init}}};")

	def emit_bind(self, w: CWriter, *, args: str = "args", kwargs: str = "kwargs", fail: str = "done") -> None:
		"""Emit arity/keyword binding plus conversion for VarArgsKeywords / SingleArg."""
		kind = self.convention.kind
		if kind is ConventionKind.NO_ARGS:
			return
		if kind is ConventionKind.SINGLE_ARG:
			self.emit_convert(w, [args], fail=fail)
			return
		if kind is not ConventionKind.VARARGS_KEYWORDS:
			raise AssertionError("slot adapters convert their own arguments")
		table = "NULL"
		if self.bound:
			table = "params"
			w.line(f"static const {self.prefix}_param params[] = {{")
			with w.indented():
				for b in self.bound:
					flags = []
					if b.param.is_required:
						flags.append(f"{self.prefix.upper()}_REQUIRED")
					if not b.param.is_positional:
						flags.append(f"{self.prefix.upper()}_KEYWORD_ONLY")
					w.line(f"{{{c_string_literal(b.param.name)}, {' | '.join(flags) or '0'}}},")
			w.line("};")
		var = self.signature.var_positional
		varkw = self.signature.var_keyword
		call = (
			f"{self.prefix}_bind_args({c_string_literal(self.owner)}, {table}, {len(self.bound)}, "
			f"{self.positional_count}, {args}, {kwargs}, {'raw' if self.bound else 'NULL'}, "
			f"{'&arg_' + var.name if var is not None else 'NULL'}, "
			f"{'&arg_' + varkw.name if varkw is not None else 'NULL'}) < 0"
		)
		w.line(f"if ({call})")
		with w.indented():
			w.goto(fail)
		self.emit_convert(w, [f"raw[{i}]" for i in range(len(self.bound))], fail=fail)

	def emit_convert(self, w: CWriter, sources: Sequence[str], *, fail: str) -> None:
		"""
		Convert each bound parameter from its C source expression.

		Sources may be NULL at run time only for optional parameters, in which
		case the declared default is assigned instead.
		"""
		for b, src in zip(self.bound, sources):
			if b.param.is_required:
				emit_from_python(w, b.native, src, b.local, arg=b.param.name, fail=fail)
				continue
			default = default_c_expr(b.native, b.param.default or "")
			w.line(f"if ({src} == NULL)")
			with w.indented():
				w.line(f"{b.local} = {default};")
			w.line("else")
			with w.block():
				emit_from_python(w, b.native, src, b.local, arg=b.param.name, fail=fail)

	def emit_cleanup(self, w: CWriter) -> None:
		for local in self.collector_locals():
			w.line(f"Py_XDECREF({local});")


def build_binder(
	sig: Signature,
	convention: CallConvention,
	resolver: TypeResolver,
	*,
	owner: str,
	prefix: str = "cpyb",
	span: Span = Span(),
) -> BinderPlan:
	"""
	Resolve parameter types, validate defaults and the convention's shape,
	and return the BinderPlan.
	"""
	kind = convention.kind
	if kind is ConventionKind.NO_ARGS and not sig.is_empty():
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE, f"{owner}: 'noargs' convention requires no parameters", span=span
		)
	if kind is ConventionKind.SINGLE_ARG:
		params = sig.params
		if len(params) != 1 or params[0].default is not None or not params[0].is_positional:
			raise GenerationError(
				ErrorKind.MALFORMED_SIGNATURE,
				f"{owner}: single-argument convention requires exactly one required positional parameter",
				span=span,
			)
	if kind is ConventionKind.SLOT and (sig.keyword_only or sig.var_positional or sig.var_keyword):
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE,
			f"{owner}: slot implementations take positional parameters only",
			span=span,
		)
	bound: List[BoundParam] = []
	for param in sig.bindable:
		pspan = param.span if param.span.is_known() else span
		native = resolver.resolve(param.type, span=pspan, usage="param")
		if param.default is not None:
			check_default(native, param.default, param=param.name, span=pspan)
		bound.append(BoundParam(param=param, native=native))
	plan = BinderPlan(owner=owner, signature=sig, convention=convention, bound=tuple(bound), prefix=prefix)
	logger.debug("binder %s: convention=%s params=%d", owner, convention, len(bound))
	return plan


def runtime_prelude(prefix: str = "cpyb") -> str:
	"""
	C source of the shared binding helper, emitted once per module.

	`out` receives borrowed references (NULL for omitted parameters);
	`*varargs` / `*varkw` receive new references (varkw stays NULL when no
	extra keywords were passed). Returns 0, or -1 with TypeError set.
	"""
	P = prefix
	U = prefix.upper()
	return f"""typedef struct {{
	const char *name;
	int flags;
}} {P}_param;

#define {U}_REQUIRED 0x1
#define {U}_KEYWORD_ONLY 0x2

static int
{P}_bind_args(const char *fname, const {P}_param *params, Py_ssize_t nparams,
	Py_ssize_t npositional, PyObject *args, PyObject *kwargs, PyObject **out,
	PyObject **varargs, PyObject **varkw)
{{
	Py_ssize_t nargs = args != NULL ? PyTuple_GET_SIZE(args) : 0;
	Py_ssize_t i;

	for (i = 0; i < nparams; i++)
		out[i] = NULL;
	if (varargs != NULL)
		*varargs = NULL;
	if (varkw != NULL)
		*varkw = NULL;
	if (nargs > npositional && varargs == NULL) {{
		PyErr_Format(PyExc_TypeError,
			"%s takes at most %zd positional arguments (%zd given)",
			fname, npositional, nargs);
		return -1;
	}}
	for (i = 0; i < nargs && i < npositional; i++)
		out[i] = PyTuple_GET_ITEM(args, i);
	if (varargs != NULL) {{
		if (nargs > npositional)
			*varargs = PyTuple_GetSlice(args, npositional, nargs);
		else
			*varargs = PyTuple_New(0);
		if (*varargs == NULL)
			return -1;
	}}
	if (kwargs != NULL) {{
		PyObject *key, *value;
		Py_ssize_t pos = 0;
		while (PyDict_Next(kwargs, &pos, &key, &value)) {{
			Py_ssize_t j;
			int matched = 0;
			if (!PyUnicode_Check(key)) {{
				PyErr_SetString(PyExc_TypeError, "keywords must be strings");
				goto fail;
			}}
			for (j = 0; j < nparams; j++) {{
				if (PyUnicode_CompareWithASCIIString(key, params[j].name) != 0)
					continue;
				if (out[j] != NULL) {{
					PyErr_Format(PyExc_TypeError,
						"%s got multiple values for argument '%s'",
						fname, params[j].name);
					goto fail;
				}}
				out[j] = value;
				matched = 1;
				break;
			}}
			if (matched)
				continue;
			if (varkw == NULL) {{
				PyErr_Format(PyExc_TypeError,
					"%s got an unexpected keyword argument '%U'", fname, key);
				goto fail;
			}}
			if (*varkw == NULL && (*varkw = PyDict_New()) == NULL)
				goto fail;
			if (PyDict_SetItem(*varkw, key, value) < 0)
				goto fail;
		}}
	}}
	for (i = 0; i < nparams; i++) {{
		if (out[i] != NULL || !(params[i].flags & {U}_REQUIRED))
			continue;
		if (params[i].flags & {U}_KEYWORD_ONLY)
			PyErr_Format(PyExc_TypeError,
				"%s missing required keyword-only argument '%s'",
				fname, params[i].name);
		else
			PyErr_Format(PyExc_TypeError,
				"%s missing required argument '%s' (pos %zd)",
				fname, params[i].name, i + 1);
		goto fail;
	}}
	return 0;

fail:
	if (varargs != NULL)
		Py_CLEAR(*varargs);
	if (varkw != NULL)
		Py_CLEAR(*varkw);
	return -1;
}}"""


__all__ = [
	"ConventionKind",
	"CallConvention",
	"NO_ARGS",
	"SINGLE_ARG",
	"VARARGS_KEYWORDS",
	"derive_convention",
	"Default",
	"BoundArguments",
	"BindingError",
	"BoundParam",
	"BinderPlan",
	"build_binder",
	"runtime_prelude",
]
