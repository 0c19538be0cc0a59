# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Declaration classifier: tags every member with exactly one protocol role.

Roles form a closed set of frozen dataclasses (`MemberRole`); consumers
dispatch on them with isinstance chains that end in an AssertionError, so a
new role cannot be silently ignored.

Precedence:
  1. explicit role options (`new`, `get`, `set`, `static`, `classmethod`,
     `call`, `slot`); two of them on one member is a conflict;
  2. inside a protocol block, dunder name -> slot;
  3. accessor naming (`get_x` / `set_x`) when `infer_accessors` is enabled;
  4. InstanceMethod.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from cpybind.core.config import GeneratorConfig
from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.decl import FunctionDecl, ImplDecl, Option, Receiver, find_option
from cpybind.gen import names
from cpybind.gen.slot_defs import SlotKind, slot_for_dunder, slot_from_option

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Constructor:
	pass


@dataclass(frozen=True)
class InstanceMethod:
	pass


@dataclass(frozen=True)
class StaticMethod:
	pass


@dataclass(frozen=True)
class ClassMethod:
	pass


@dataclass(frozen=True)
class Getter:
	name: str


@dataclass(frozen=True)
class Setter:
	name: str


@dataclass(frozen=True)
class SlotImpl:
	kind: SlotKind


MemberRole = Union[Constructor, InstanceMethod, StaticMethod, ClassMethod, Getter, Setter, SlotImpl]

ROLE_OPTIONS = ("new", "get", "set", "static", "classmethod", "call", "slot")
MEMBER_OPTIONS = frozenset(ROLE_OPTIONS) | {"name", "text_signature", "symbol", "raises", "args", "doc", "convention"}
FUNCTION_OPTIONS = (MEMBER_OPTIONS - set(ROLE_OPTIONS)) | {"function", "hidden"}
IMPL_OPTIONS = frozenset({"proto", "methods"})


@dataclass(frozen=True)
class ClassifiedMember:
	decl: FunctionDecl
	role: MemberRole
	exposed_name: str
	native_symbol: str
	raises: bool = False

	@property
	def span(self):
		return self.decl.span

	def option(self, key: str) -> Optional[Option]:
		return find_option(self.decl.options, key)


def check_options(options: Tuple[Option, ...], allowed, *, what: str, span=None) -> None:
	"""Reject option keys outside `allowed`."""
	for opt in options:
		if opt.key not in allowed:
			raise GenerationError(
				ErrorKind.UNRECOGNIZED_OPTION,
				f"unrecognized option '{opt.key}' on {what}",
				span=opt.span if opt.span.is_known() else span,
			)


def _strip_accessor_prefix(name: str, prefix: str) -> str:
	if name.startswith(prefix) and len(name) > len(prefix):
		return name[len(prefix):]
	return name


def _explicit_role(decl: FunctionDecl, owner: str) -> Optional[MemberRole]:
	found: List[Option] = [opt for opt in decl.options if opt.key in ROLE_OPTIONS]
	if not found:
		return None
	if len(found) > 1:
		keys = ", ".join(opt.key for opt in found)
		raise GenerationError(
			ErrorKind.CONFLICTING_CLASSIFICATION,
			f"{owner}.{decl.name}: mutually exclusive role options: {keys}",
			span=decl.span,
		)
	opt = found[0]
	name_opt = find_option(decl.options, "name")
	if opt.key == "new":
		return Constructor()
	if opt.key == "get":
		prop = opt.value or (name_opt.value if name_opt else None) or _strip_accessor_prefix(decl.name, "get_")
		return Getter(prop)
	if opt.key == "set":
		prop = opt.value or (name_opt.value if name_opt else None) or _strip_accessor_prefix(decl.name, "set_")
		return Setter(prop)
	if opt.key == "static":
		return StaticMethod()
	if opt.key == "classmethod":
		return ClassMethod()
	if opt.key == "call":
		return SlotImpl(SlotKind.CALL)
	kind = slot_from_option(opt.value or "")
	if kind is None:
		raise GenerationError(
			ErrorKind.UNSUPPORTED_SLOT_ON_TYPE,
			f"{owner}.{decl.name}: unknown slot '{opt.value}'",
			span=decl.span,
		)
	return SlotImpl(kind)


def _inferred_role(decl: FunctionDecl, owner: str, *, protocol: bool, config: GeneratorConfig) -> MemberRole:
	if protocol:
		kind = slot_for_dunder(decl.name)
		if kind is None:
			raise GenerationError(
				ErrorKind.UNSUPPORTED_SLOT_ON_TYPE,
				f"{owner}.{decl.name}: '{decl.name}' is not a protocol slot",
				span=decl.span,
			)
		return SlotImpl(kind)
	if config.infer_accessors and decl.receiver is Receiver.SELF:
		if decl.name.startswith("get_") and not decl.params:
			return Getter(_strip_accessor_prefix(decl.name, "get_"))
		if decl.name.startswith("set_") and len(decl.params) == 1:
			return Setter(_strip_accessor_prefix(decl.name, "set_"))
	return InstanceMethod()


def _check_receiver(decl: FunctionDecl, role: MemberRole, owner: str) -> None:
	where = f"{owner}.{decl.name}"
	recv = decl.receiver
	if isinstance(role, Constructor) or (isinstance(role, SlotImpl) and role.kind is SlotKind.CONSTRUCT):
		if recv is Receiver.CLS:
			raise GenerationError(
				ErrorKind.CONFLICTING_CLASSIFICATION, f"{where}: constructor cannot take 'cls'", span=decl.span
			)
		return
	if isinstance(role, StaticMethod):
		if recv is not Receiver.NONE:
			raise GenerationError(
				ErrorKind.CONFLICTING_CLASSIFICATION,
				f"{where}: static method cannot take a '{recv.name.lower()}' receiver",
				span=decl.span,
			)
		return
	if isinstance(role, ClassMethod):
		if recv is not Receiver.CLS:
			raise GenerationError(
				ErrorKind.CONFLICTING_CLASSIFICATION, f"{where}: class method must take 'cls'", span=decl.span
			)
		return
	if isinstance(role, Getter):
		if recv is not Receiver.SELF or decl.params:
			raise GenerationError(
				ErrorKind.MALFORMED_SIGNATURE, f"{where}: getter must take only 'self'", span=decl.span
			)
		return
	if isinstance(role, Setter):
		if recv is not Receiver.SELF or len(decl.params) != 1:
			raise GenerationError(
				ErrorKind.MALFORMED_SIGNATURE,
				f"{where}: setter must take 'self' and exactly one value",
				span=decl.span,
			)
		return
	if isinstance(role, (InstanceMethod, SlotImpl)):
		if recv is Receiver.CLS:
			raise GenerationError(
				ErrorKind.CONFLICTING_CLASSIFICATION,
				f"{where}: 'cls' receiver requires the classmethod option",
				span=decl.span,
			)
		if recv is not Receiver.SELF:
			raise GenerationError(
				ErrorKind.MALFORMED_SIGNATURE, f"{where}: missing 'self' receiver", span=decl.span
			)
		return
	raise AssertionError(f"unhandled member role {role!r}")


def classify_member(
	decl: FunctionDecl,
	*,
	owner: str,
	protocol: bool = False,
	config: GeneratorConfig = GeneratorConfig(),
) -> ClassifiedMember:
	"""Classify one member of class `owner`."""
	check_options(decl.options, MEMBER_OPTIONS, what=f"member '{owner}.{decl.name}'", span=decl.span)
	role = _explicit_role(decl, owner)
	if role is None:
		role = _inferred_role(decl, owner, protocol=protocol, config=config)
	if isinstance(role, SlotImpl) and role.kind is SlotKind.CONSTRUCT:
		role = Constructor()
	_check_receiver(decl, role, owner)
	name_opt = find_option(decl.options, "name")
	symbol_opt = find_option(decl.options, "symbol")
	if isinstance(role, (Getter, Setter)):
		exposed = role.name
	else:
		exposed = name_opt.value if name_opt is not None and name_opt.value else decl.name
	symbol = symbol_opt.value if symbol_opt is not None and symbol_opt.value else names.native_symbol(owner, decl.name)
	member = ClassifiedMember(
		decl=decl,
		role=role,
		exposed_name=exposed,
		native_symbol=symbol,
		raises=find_option(decl.options, "raises") is not None,
	)
	logger.debug("classified %s.%s as %r", owner, decl.name, role)
	return member


def classify_impl(impl: ImplDecl, *, config: GeneratorConfig = GeneratorConfig()) -> Tuple[ClassifiedMember, ...]:
	"""Classify every member of an impl block (protocol blocks map dunders to slots)."""
	check_options(impl.options, IMPL_OPTIONS, what=f"impl block for '{impl.target}'", span=impl.span)
	return tuple(
		classify_member(m, owner=impl.target, protocol=impl.is_protocol, config=config) for m in impl.members
	)


def classify_function(decl: FunctionDecl) -> ClassifiedMember:
	"""
	Validate a module-level function.

	Module functions have no receiver and cannot carry member roles; they are
	reported with the StaticMethod role (called without a receiver).
	"""
	for opt in decl.options:
		if opt.key in ("slot", "call"):
			raise GenerationError(
				ErrorKind.UNSUPPORTED_SLOT_ON_TYPE,
				f"function '{decl.name}': slots can only be implemented by class members",
				span=decl.span,
			)
		if opt.key in ROLE_OPTIONS:
			raise GenerationError(
				ErrorKind.CONFLICTING_CLASSIFICATION,
				f"function '{decl.name}': option '{opt.key}' is only valid on class members",
				span=decl.span,
			)
	check_options(decl.options, FUNCTION_OPTIONS, what=f"function '{decl.name}'", span=decl.span)
	if decl.receiver is not Receiver.NONE:
		raise GenerationError(
			ErrorKind.MALFORMED_SIGNATURE,
			f"function '{decl.name}': module functions take no receiver",
			span=decl.span,
		)
	name_opt = find_option(decl.options, "name")
	symbol_opt = find_option(decl.options, "symbol")
	return ClassifiedMember(
		decl=decl,
		role=StaticMethod(),
		exposed_name=name_opt.value if name_opt is not None and name_opt.value else decl.name,
		native_symbol=symbol_opt.value if symbol_opt is not None and symbol_opt.value else names.native_symbol(None, decl.name),
		raises=find_option(decl.options, "raises") is not None,
	)


__all__ = [
	"Constructor",
	"InstanceMethod",
	"StaticMethod",
	"ClassMethod",
	"Getter",
	"Setter",
	"SlotImpl",
	"MemberRole",
	"ClassifiedMember",
	"ROLE_OPTIONS",
	"check_options",
	"classify_member",
	"classify_impl",
	"classify_function",
]
