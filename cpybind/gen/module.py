# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Module registrator.

Collects finished type descriptors and module functions into one C
translation unit ending in `PyInit_<name>`:

	#define PY_SSIZE_T_CLEAN
	#include <Python.h> ... user headers
	object structs, type forward declarations, wrap helpers
	binder runtime (only when some adapter binds (args, kwargs))
	type definitions, function wrappers
	PyMethodDef table, PyModuleDef, PyInit_<name>
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from cpybind.core.config import GeneratorConfig
from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.fragment import CodeFragment, CWriter, c_ident, c_string_literal
from cpybind.core.span import Span
from cpybind.decl import FunctionDecl, Option, find_option, iter_options
from cpybind.gen.binder import runtime_prelude
from cpybind.gen.classify import check_options, classify_function
from cpybind.gen.convert import TypeResolver
from cpybind.gen.methods import (
	MethodEntry,
	build_member_plan,
	display_name,
	emit_method,
	render_method_table,
	resolve_return,
)
from cpybind.gen.textsig import member_doc
from cpybind.gen.typedesc import TypeDescriptor

logger = logging.getLogger(__name__)

MODULE_OPTIONS = frozenset({"include", "doc"})
SYSTEM_INCLUDES = ("<Python.h>", "<limits.h>", "<stddef.h>", "<stdint.h>", "<stdbool.h>")


@dataclass(frozen=True)
class FunctionDescriptor:
	"""A generated module-level function."""

	name: str  # native declaration name
	entry: MethodEntry
	text: str
	hidden: bool = False
	span: Span = Span()

	@property
	def exposed_name(self) -> str:
		return self.entry.name


@dataclass(frozen=True)
class ModuleDescriptor:
	name: str
	types: Tuple[TypeDescriptor, ...]
	functions: Tuple[FunctionDescriptor, ...]
	fragment: CodeFragment

	@property
	def exports(self) -> List[str]:
		"""Exposed names added to the module object, in registration order."""
		out = [t.exposed_name for t in self.types if not t.hidden]
		out.extend(f.exposed_name for f in self.functions if not f.hidden)
		return out

	@property
	def init_function(self) -> str:
		return f"PyInit_{c_ident(self.name)}"

	def render(self) -> str:
		return self.fragment.render()


def build_function(
	decl: FunctionDecl,
	*,
	resolver: TypeResolver,
	config: GeneratorConfig = GeneratorConfig(),
) -> FunctionDescriptor:
	"""Generate the wrapper for one module-level function."""
	member = classify_function(decl)
	display = display_name(None, member.exposed_name)
	plan = build_member_plan(member, resolver, display=display, prefix=config.runtime_prefix)
	ret = resolve_return(member, resolver, allow_self=False)
	adapter, flags = emit_method(member, plan, ret, layout=None, display=display)
	sig_opt = member.option("text_signature")
	doc_opt = member.option("doc")
	doc = member_doc(
		member.exposed_name,
		plan,
		receiver="$module",
		override=sig_opt.value if sig_opt is not None else None,
		doc=doc_opt.value if doc_opt is not None else None,
		auto=config.auto_text_signature,
	)
	return FunctionDescriptor(
		name=decl.name,
		entry=MethodEntry(member.exposed_name, adapter.name, flags, doc, decl.span),
		text=adapter.text,
		hidden=member.option("hidden") is not None,
		span=decl.span,
	)


def check_exports(types: Sequence[TypeDescriptor], functions: Sequence[FunctionDescriptor]) -> None:
	"""Raise DuplicateExportName (both spans) if two exports share a name."""
	seen: Dict[str, Span] = {}
	candidates: List[Tuple[str, Span]] = [(t.exposed_name, t.span) for t in types if not t.hidden]
	candidates.extend((f.exposed_name, f.span) for f in functions if not f.hidden)
	for name, span in candidates:
		first = seen.get(name)
		if first is not None:
			raise GenerationError(
				ErrorKind.DUPLICATE_EXPORT_NAME,
				f"module attribute '{name}' is exported twice",
				span=span,
				related=(first,),
			)
		seen[name] = span


def _include_spelling(value: str) -> str:
	value = value.strip()
	if value.startswith("<") and value.endswith(">"):
		return value
	return value.strip('"')


def _render_init(name: str, types: Sequence[TypeDescriptor], functions: Sequence[FunctionDescriptor]) -> str:
	w = CWriter()
	w.line("PyMODINIT_FUNC")
	w.line(f"PyInit_{c_ident(name)}(void)")
	with w.block():
		w.line("PyObject *module;")
		w.line()
		# Bases come first: types are listed in generation order.
		for t in types:
			w.line(f"if (PyType_Ready(&{t.type_object}) < 0)")
			with w.indented():
				w.line("return NULL;")
		w.line(f"module = PyModule_Create(&{c_ident(name)}_module);")
		w.line("if (module == NULL)")
		with w.indented():
			w.line("return NULL;")
		for t in types:
			if t.hidden:
				continue
			w.line(
				f"if (PyModule_AddObjectRef(module, {c_string_literal(t.exposed_name)}, "
				f"(PyObject *)&{t.type_object}) < 0)"
			)
			with w.indented():
				w.goto("fail")
		w.line("return module;")
		if w.jumps_to("fail"):
			w.line()
			w.label("fail")
			w.line("Py_DECREF(module);")
			w.line("return NULL;")
	return w.render()


def _render_module_def(name: str, doc: Optional[str], has_functions: bool) -> str:
	ident = c_ident(name)
	w = CWriter()
	with w.block(f"static struct PyModuleDef {ident}_module =", trailer=";"):
		w.line("PyModuleDef_HEAD_INIT,")
		w.line(f".m_name = {c_string_literal(name)},")
		w.line(f".m_doc = {c_string_literal(doc) if doc else 'NULL'},")
		w.line(".m_size = -1,")
		if has_functions:
			w.line(f".m_methods = {ident}_functions,")
	return w.render()


def build_module(
	name: str,
	types: Sequence[TypeDescriptor] = (),
	functions: Sequence[FunctionDescriptor] = (),
	*,
	options: Tuple[Option, ...] = (),
	config: GeneratorConfig = GeneratorConfig(),
	span: Span = Span(),
) -> ModuleDescriptor:
	"""
	Assemble the module fragment.

	`types` must be in dependency order (a base before its subclasses); it is
	also the PyType_Ready order. Hidden types are readied but not exported.
	"""
	check_options(options, MODULE_OPTIONS, what=f"module '{name}'", span=span)
	check_exports(types, functions)

	fragment = CodeFragment()
	fragment.preamble.append("#define PY_SSIZE_T_CLEAN")
	for header in SYSTEM_INCLUDES:
		fragment.include(header)
	for opt in iter_options(options, "include"):
		if opt.value:
			fragment.include(_include_spelling(opt.value))

	body = CodeFragment()
	for t in types:
		body.extend(t.fragment)
	exported = [f for f in functions if not f.hidden]
	for f in exported:
		body.define(f.text)

	prefix = config.runtime_prefix
	fragment.decls.extend(body.decls)
	if any(f"{prefix}_bind_args(" in text for text in body.defs):
		fragment.define(runtime_prelude(prefix))
	fragment.defs.extend(body.defs)

	ident = c_ident(name)
	if exported:
		fragment.define(render_method_table(f"{ident}_functions", [f.entry for f in exported]))
	doc_opt = find_option(options, "doc")
	fragment.define(_render_module_def(name, doc_opt.value if doc_opt is not None else None, bool(exported)))
	fragment.define(_render_init(name, types, exported))

	module = ModuleDescriptor(name=name, types=tuple(types), functions=tuple(exported), fragment=fragment)
	logger.debug("module %s: exports %s", name, module.exports)
	return module


__all__ = [
	"MODULE_OPTIONS",
	"FunctionDescriptor",
	"ModuleDescriptor",
	"build_function",
	"check_exports",
	"build_module",
]
