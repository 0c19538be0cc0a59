# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import json
from pathlib import Path

from cpybind.cli import main

GEOMETRY = """module geometry;
#![include = "geometry.h"]

#[class(subclass)]
struct Point {
	#[get, set] x: long;
	y: long;
}

#[methods]
impl Point {
	#[new] fn new(x: long, y: long = 0) -> Point;
	fn norm(self) -> double;
}

#[proto]
impl Point {
	fn __repr__(self) -> PyObject *;
}

fn dist(a: Point *, b: Point *) -> double;
"""


def _write(tmp_path: Path, name: str, text: str) -> Path:
	path = tmp_path / name
	path.write_text(text)
	return path


def test_writes_output_file(tmp_path: Path, capsys) -> None:
	src = _write(tmp_path, "geometry.bind", GEOMETRY)
	out = tmp_path / "geometry.c"
	assert main([str(src), "-o", str(out)]) == 0
	text = out.read_text()
	assert '#include "geometry.h"' in text
	assert ".tp_repr = Point__repr__slot," in text
	captured = capsys.readouterr()
	assert captured.out == ""
	assert captured.err == ""


def test_prints_to_stdout_without_output(tmp_path: Path, capsys) -> None:
	src = _write(tmp_path, "geometry.bind", GEOMETRY)
	assert main([str(src)]) == 0
	assert "PyInit_geometry(void)" in capsys.readouterr().out


def test_json_report(tmp_path: Path, capsys) -> None:
	src = _write(tmp_path, "geometry.bind", GEOMETRY + "fn broken(x: opaque_t *);\n")
	assert main([str(src), "--json"]) == 1
	payload = json.loads(capsys.readouterr().out)
	assert payload["exit_code"] == 1
	assert payload["module"] == "geometry"
	assert payload["exports"] == ["Point", "dist"]
	(diag,) = payload["diagnostics"]
	assert diag["phase"] == "generate"
	assert diag["code"] == "UnsupportedType"
	assert diag["file"] == str(src)
	assert diag["line"] == 22


def test_partial_output_still_written(tmp_path: Path, capsys) -> None:
	src = _write(tmp_path, "geometry.bind", GEOMETRY + "fn broken(x: opaque_t *);\n")
	out = tmp_path / "geometry.c"
	assert main([str(src), "-o", str(out)]) == 1
	assert "fn__dist__meth" in out.read_text()
	err = capsys.readouterr().err
	assert f"{src}:22:" in err
	assert "error[UnsupportedType]" in err


def test_syntax_error(tmp_path: Path, capsys) -> None:
	src = _write(tmp_path, "bad.bind", "module geometry;\nstruct {\n")
	out = tmp_path / "bad.c"
	assert main([str(src), "-o", str(out), "--json"]) == 1
	assert not out.exists()
	payload = json.loads(capsys.readouterr().out)
	assert payload["diagnostics"][0]["phase"] == "parser"
	assert "module" not in payload


def test_module_mismatch_note(tmp_path: Path, capsys) -> None:
	a = _write(tmp_path, "a.bind", "module geo;\n")
	b = _write(tmp_path, "b.bind", "module shapes;\n")
	assert main([str(a), str(b)]) == 1
	err = capsys.readouterr().err
	assert "module name mismatch" in err
	assert f"  note: module first declared at {a}:1:1" in err


def test_config_file(tmp_path: Path, capsys) -> None:
	src = _write(tmp_path, "geometry.bind", GEOMETRY)
	cfg = _write(tmp_path, "cpybind.json", '{"runtime_prefix": "geo", "module_name_override": "_geometry"}')
	assert main([str(src), "--config", str(cfg)]) == 0
	out = capsys.readouterr().out
	assert "PyInit__geometry(void)" in out
	assert "geo_bind_args(" in out


def test_bad_config(tmp_path: Path, capsys) -> None:
	src = _write(tmp_path, "geometry.bind", GEOMETRY)
	cfg = _write(tmp_path, "cpybind.json", '{"prefix": "geo"}')
	assert main([str(src), "--config", str(cfg), "--json"]) == 1
	(diag,) = json.loads(capsys.readouterr().out)["diagnostics"]
	assert diag["phase"] == "config"
	assert diag["file"] == str(cfg)
	assert "unknown configuration key(s): prefix" in diag["message"]
