"""Program language: formulas, program model, lexer and parser."""

from houdini.lang.parser import parse, parse_file

__all__ = ["parse", "parse_file"]
