# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
`__text_signature__` rendering.

CPython recovers a callable's signature from the first lines of its doc
string when they read `name(params)` followed by a `--` line. Receivers use
the `$self` / `$type` / `$module` placeholders; type docs omit the receiver.
"""

from __future__ import annotations

from typing import List, Optional

from cpybind.gen.binder import BinderPlan, ConventionKind
from cpybind.gen.convert import default_py_text


def text_signature(plan: Optional[BinderPlan], *, receiver: Optional[str] = None) -> str:
	parts: List[str] = []
	if receiver is not None:
		parts.append(receiver)
	if plan is not None:
		sig = plan.signature
		by_name = {b.param.name: b for b in plan.bound}
		for param in sig.positional:
			if param.default is None:
				parts.append(param.name)
			else:
				parts.append(f"{param.name}={default_py_text(by_name[param.name].native, param.default)}")
		if plan.convention.kind is ConventionKind.SINGLE_ARG:
			parts.append("/")
		if sig.var_positional is not None:
			parts.append(f"*{sig.var_positional.name}")
		elif sig.keyword_only:
			parts.append("*")
		for param in sig.keyword_only:
			if param.default is None:
				parts.append(param.name)
			else:
				parts.append(f"{param.name}={default_py_text(by_name[param.name].native, param.default)}")
		if sig.var_keyword is not None:
			parts.append(f"**{sig.var_keyword.name}")
	return "(" + ", ".join(parts) + ")"


def assemble_doc(name: str, signature: Optional[str], doc: Optional[str]) -> Optional[str]:
	"""Join a text signature and a doc body; None when there is neither."""
	if signature is None:
		return doc
	head = f"{name}{signature}\n--\n\n"
	return head + (doc or "")


def member_doc(
	name: str,
	plan: Optional[BinderPlan],
	*,
	receiver: Optional[str],
	override: Optional[str],
	doc: Optional[str],
	auto: bool,
) -> Optional[str]:
	"""
	Doc string for a method, module function or type.

	An explicit `text_signature` override always wins; otherwise the
	signature is derived from the plan when `auto` is set.
	"""
	if override is not None:
		sig = override if override.startswith("(") else f"({override})"
	elif auto:
		sig = text_signature(plan, receiver=receiver)
	else:
		sig = None
	return assemble_doc(name, sig, doc)


__all__ = ["text_signature", "assemble_doc", "member_doc"]
