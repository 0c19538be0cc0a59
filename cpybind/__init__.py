"""
cpybind: CPython extension-module generator.

Declarations (`cpybind.decl`) go in, a C translation unit comes out. The
front end (`cpybind.frontend`) and the CLI (`cpybind.cli`) are optional
layers; `cpybind.gen.driver.generate_module` is the library entry point.
"""

__version__ = "0.3.0"

__all__ = ["core", "decl", "gen", "frontend", "cli"]
