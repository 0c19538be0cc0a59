# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""C symbol naming for generated code."""

from __future__ import annotations

from cpybind.core.fragment import c_ident


def object_struct(class_name: str) -> str:
	return f"{class_name}Object"


def type_object(class_name: str) -> str:
	return f"{class_name}_Type"


def wrap_fn(class_name: str) -> str:
	return f"{class_name}_wrap"


def native_symbol(owner: str | None, member: str) -> str:
	"""
	Default native symbol for a member.

	`Point.scale` -> `Point_scale`; dunder names are stripped, so
	`Point.__repr__` -> `Point_repr`. Free functions keep their own name.
	"""
	base = member
	if base.startswith("__") and base.endswith("__") and len(base) > 4:
		base = base[2:-2]
	if owner is None:
		return c_ident(base)
	return c_ident(f"{owner}_{base}")


def adapter(owner: str | None, member: str, suffix: str) -> str:
	prefix = owner if owner is not None else "fn"
	return c_ident(f"{prefix}__{member.strip('_') or member}__{suffix}")


__all__ = ["object_struct", "type_object", "wrap_fn", "native_symbol", "adapter"]
