"""Python source generation for compiled spellbooks."""

from grimoire.emitter.python_source import load_module, render_module

__all__ = ["load_module", "render_module"]
