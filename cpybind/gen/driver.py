# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Batch driver.

A module is generated unit by unit: a class together with its impl blocks,
or one free function. A unit that fails becomes a diagnostic and is skipped
while its siblings continue. Afterwards every unit that still refers to a
class that was not generated (through a parameter, return, field or base)
is dropped as well, repeating until nothing changes, so the emitted C never
names a type that does not exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Union

from cpybind.core.config import GeneratorConfig
from cpybind.core.diagnostics import Diagnostic, has_errors
from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.core.span import Span
from cpybind.decl import ClassDecl, FunctionDecl, ImplDecl, ModuleDecl, TypeRef, find_option
from cpybind.gen.convert import TypeResolver
from cpybind.gen.module import FunctionDescriptor, ModuleDescriptor, build_function, build_module
from cpybind.gen.typedesc import TypeDescriptor, build_type_descriptor

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
	module: Optional[ModuleDescriptor]
	text: str = ""
	diagnostics: List[Diagnostic] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return self.module is not None and not has_errors(self.diagnostics)


@dataclass
class _Unit:
	name: str
	decl: Union[ClassDecl, FunctionDecl]
	impls: List[ImplDecl] = field(default_factory=list)
	refs: FrozenSet[str] = frozenset()
	base: Optional[str] = None
	result: Union[TypeDescriptor, FunctionDescriptor, None] = None

	@property
	def is_class(self) -> bool:
		return isinstance(self.decl, ClassDecl)

	@property
	def span(self) -> Span:
		return self.decl.span


def _class_of(ty: Optional[TypeRef], classes: Set[str], aliases: Dict[str, str]) -> Optional[str]:
	if ty is None:
		return None
	spelling = aliases.get(ty.spelling, ty.spelling)
	if spelling in classes:
		return spelling
	ref = TypeRef(spelling)
	if ref.is_pointer and ref.pointee in classes:
		return ref.pointee
	return None


def _function_refs(decls: Iterable[FunctionDecl], classes: Set[str], aliases: Dict[str, str]) -> Set[str]:
	out: Set[str] = set()
	for fn in decls:
		for ty in [p.type for p in fn.params] + [fn.return_type]:
			name = _class_of(ty, classes, aliases)
			if name is not None:
				out.add(name)
	return out


def _collect_units(module: ModuleDecl, diagnostics: List[Diagnostic], aliases: Dict[str, str]) -> List[_Unit]:
	units: List[_Unit] = []
	by_class: Dict[str, _Unit] = {}
	impls: List[ImplDecl] = []
	for item in module.items:
		if isinstance(item, ClassDecl):
			if item.name in by_class:
				err = GenerationError(
					ErrorKind.DUPLICATE_EXPORT_NAME,
					f"class '{item.name}' is declared twice",
					span=item.span,
					related=(by_class[item.name].span,),
				)
				diagnostics.append(Diagnostic.from_error(err))
				continue
			unit = _Unit(item.name, item)
			by_class[item.name] = unit
			units.append(unit)
		elif isinstance(item, ImplDecl):
			impls.append(item)
		elif isinstance(item, FunctionDecl):
			units.append(_Unit(item.name, item))
		else:
			raise AssertionError(f"unhandled module item {item!r}")
	for impl in impls:
		owner = by_class.get(impl.target)
		if owner is None:
			err = GenerationError(
				ErrorKind.UNSUPPORTED_TYPE,
				f"impl block for unknown class '{impl.target}'",
				span=impl.span,
			)
			diagnostics.append(Diagnostic.from_error(err))
			continue
		owner.impls.append(impl)

	classes = set(by_class)
	for unit in units:
		if isinstance(unit.decl, ClassDecl):
			refs = _function_refs((m for impl in unit.impls for m in impl.members), classes, aliases)
			for fld in unit.decl.fields:
				name = _class_of(fld.type, classes, aliases)
				if name is not None:
					refs.add(name)
			base_opt = find_option(unit.decl.options, "base")
			if base_opt is not None and base_opt.value not in (None, "", "object"):
				unit.base = base_opt.value
			refs.discard(unit.name)
			unit.refs = frozenset(refs)
		else:
			unit.refs = frozenset(_function_refs([unit.decl], classes, aliases))
	return units


def _prune(units: List[_Unit], failed: Set[str], diagnostics: List[Diagnostic]) -> None:
	changed = True
	while changed:
		changed = False
		for unit in units:
			if unit.result is None:
				continue
			if unit.base is not None and unit.base in failed:
				err = GenerationError(
					ErrorKind.UNRESOLVED_BASE_TYPE,
					f"{unit.name}: base '{unit.base}' was not generated",
					span=unit.span,
				)
			else:
				missing = sorted(unit.refs & failed)
				if not missing:
					continue
				err = GenerationError(
					ErrorKind.UNSUPPORTED_TYPE,
					f"{unit.name}: depends on class '{missing[0]}', which was not generated",
					span=unit.span,
				)
			logger.debug("dropping %s: %s", unit.name, err.message)
			diagnostics.append(Diagnostic.from_error(err))
			unit.result = None
			if unit.is_class:
				failed.add(unit.name)
			changed = True


def _exported_name(unit: _Unit) -> Optional[str]:
	result = unit.result
	if result is None or result.hidden:
		return None
	return result.exposed_name


def _drop_duplicate_exports(units: List[_Unit], failed: Set[str], diagnostics: List[Diagnostic]) -> bool:
	"""Drop every later unit exporting an already-used name; returns whether any was dropped."""
	seen: Dict[str, _Unit] = {}
	dropped = False
	for unit in units:
		exported = _exported_name(unit)
		if exported is None:
			continue
		first = seen.get(exported)
		if first is None:
			seen[exported] = unit
			continue
		err = GenerationError(
			ErrorKind.DUPLICATE_EXPORT_NAME,
			f"module attribute '{exported}' is exported by both '{first.name}' and '{unit.name}'",
			span=unit.span,
			related=(first.span,),
		)
		diagnostics.append(Diagnostic.from_error(err))
		unit.result = None
		if unit.is_class:
			failed.add(unit.name)
		dropped = True
	return dropped


def generate_module(module: ModuleDecl, config: GeneratorConfig = GeneratorConfig()) -> GenerationResult:
	"""
	Generate `module`, isolating failures per declaration unit.

	Returns the module descriptor (None only if module-level assembly
	failed), the rendered C text and every diagnostic in the order found.
	"""
	name = config.module_name_override or module.name
	diagnostics: List[Diagnostic] = []
	aliases = {TypeRef.of(k).spelling: TypeRef.of(v).spelling for k, v in config.type_aliases.items()}
	units = _collect_units(module, diagnostics, aliases)
	resolver = TypeResolver(
		[u.name for u in units if u.is_class],
		config.type_aliases,
		derived=[u.name for u in units if u.base is not None],
	)

	failed: Set[str] = set()
	generated: Dict[str, TypeDescriptor] = {}
	for unit in units:
		try:
			if isinstance(unit.decl, ClassDecl):
				desc = build_type_descriptor(
					unit.decl,
					unit.impls,
					generated=generated,
					resolver=resolver,
					config=config,
					module_name=name,
				)
				generated[unit.name] = desc
				unit.result = desc
			else:
				unit.result = build_function(unit.decl, resolver=resolver, config=config)
		except GenerationError as err:
			logger.debug("unit %s failed: %s", unit.name, err)
			diagnostics.append(Diagnostic.from_error(err))
			if unit.is_class:
				failed.add(unit.name)

	_prune(units, failed, diagnostics)
	while _drop_duplicate_exports(units, failed, diagnostics):
		_prune(units, failed, diagnostics)

	alive = [u for u in units if u.result is not None]
	try:
		descriptor = build_module(
			name,
			[u.result for u in alive if isinstance(u.result, TypeDescriptor)],
			[u.result for u in alive if isinstance(u.result, FunctionDescriptor)],
			options=module.options,
			config=config,
			span=module.span,
		)
	except GenerationError as err:
		diagnostics.append(Diagnostic.from_error(err))
		return GenerationResult(module=None, text="", diagnostics=diagnostics)
	logger.info("generated module %s: %d of %d unit(s)", name, len(alive), len(units))
	return GenerationResult(module=descriptor, text=descriptor.render(), diagnostics=diagnostics)


__all__ = ["GenerationResult", "generate_module"]
