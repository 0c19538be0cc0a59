# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from cpybind.core.errors import ErrorKind, GenerationError
from cpybind.decl import ParamDecl, ParamMarker, TypeRef
from cpybind.gen.signature import ParamKind, build_signature
from cpybind.test_support import kwstar, opt, param, star


def _kinds(sig):
	return [(p.name, p.kind) for p in sig.params]


def test_full_python_parameter_shape() -> None:
	sig = build_signature(
		[
			param("a"),
			param("b", default="1"),
			star("rest"),
			param("c"),
			param("d", default="2"),
			kwstar("extra"),
		],
		owner="f()",
	)
	assert _kinds(sig) == [
		("a", ParamKind.REQUIRED_POSITIONAL),
		("b", ParamKind.OPTIONAL_POSITIONAL),
		("rest", ParamKind.POSITIONAL_COLLECTOR),
		("c", ParamKind.KEYWORD_ONLY),
		("d", ParamKind.KEYWORD_ONLY),
		("extra", ParamKind.KEYWORD_COLLECTOR),
	]
	assert [p.name for p in sig.bindable] == ["a", "b", "c", "d"]
	assert sig.required_count == 2
	assert sig.var_positional is not None and sig.var_positional.name == "rest"
	assert sig.var_keyword is not None and sig.var_keyword.name == "extra"


def test_empty_signature() -> None:
	sig = build_signature([], owner="f()")
	assert sig.is_empty()
	assert len(sig) == 0
	assert sig.var_positional is None


def test_bare_star_makes_keyword_only_and_is_not_a_parameter() -> None:
	sig = build_signature([param("a"), star(), param("k", default="0")], owner="f()")
	assert _kinds(sig) == [("a", ParamKind.REQUIRED_POSITIONAL), ("k", ParamKind.KEYWORD_ONLY)]
	assert not sig.params[1].is_required


def test_required_keyword_only_after_optional_positional_is_fine() -> None:
	sig = build_signature([param("a", default="1"), star(), param("k")], owner="f()")
	assert sig.params[1].is_required


def test_required_after_optional_positional_rejected() -> None:
	with pytest.raises(GenerationError) as excinfo:
		build_signature([param("a", default="1"), param("b")], owner="f()")
	assert excinfo.value.kind is ErrorKind.MALFORMED_SIGNATURE
	assert "'b' follows an optional" in excinfo.value.message


def test_duplicate_parameter_rejected() -> None:
	with pytest.raises(GenerationError) as excinfo:
		build_signature([param("a"), param("a")], owner="f()")
	assert excinfo.value.kind is ErrorKind.MALFORMED_SIGNATURE


def test_two_positional_collectors_rejected() -> None:
	with pytest.raises(GenerationError):
		build_signature([star("a"), star("b")], owner="f()")


def test_bare_star_then_collector_rejected() -> None:
	with pytest.raises(GenerationError):
		build_signature([star(), star("rest")], owner="f()")


def test_keyword_collector_must_be_last() -> None:
	with pytest.raises(GenerationError) as excinfo:
		build_signature([kwstar("kw"), param("a")], owner="f()")
	assert "must be the last" in excinfo.value.message


def test_bare_star_needs_keyword_only_parameter() -> None:
	with pytest.raises(GenerationError) as excinfo:
		build_signature([param("a"), star()], owner="f()")
	assert "must follow bare '*'" in excinfo.value.message
	with pytest.raises(GenerationError):
		build_signature([star(), kwstar("kw")], owner="f()")


def test_collector_must_be_pyobject() -> None:
	bad = ParamDecl(name="rest", type=TypeRef("long"), marker=ParamMarker.STAR)
	with pytest.raises(GenerationError) as excinfo:
		build_signature([bad], owner="f()")
	assert "PyObject *" in excinfo.value.message


def test_args_option_supplies_defaults_and_collectors() -> None:
	args = opt("args", None, opt("b", "5"), opt("rest", "*"), opt("kw", "**"))
	sig = build_signature(
		[param("a"), param("b"), param("rest", "PyObject *"), param("kw", "PyObject *")],
		owner="f()",
		options=(args,),
	)
	assert _kinds(sig) == [
		("a", ParamKind.REQUIRED_POSITIONAL),
		("b", ParamKind.OPTIONAL_POSITIONAL),
		("rest", ParamKind.POSITIONAL_COLLECTOR),
		("kw", ParamKind.KEYWORD_COLLECTOR),
	]
	assert sig.params[1].default == "5"


def test_args_option_unknown_parameter_rejected() -> None:
	args = opt("args", None, opt("nope", "1"))
	with pytest.raises(GenerationError) as excinfo:
		build_signature([param("a")], owner="f()", options=(args,))
	assert "unknown parameter 'nope'" in excinfo.value.message


def test_error_points_at_parameter_span() -> None:
	first = param("a", default="1")
	second = param("b")
	with pytest.raises(GenerationError) as excinfo:
		build_signature([first, second], owner="f()")
	assert excinfo.value.span == second.span
