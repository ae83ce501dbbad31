####################################################################################################
# commands/__init__.py
# The main functions of the commands that can be invoked with python -m surfdemons.

import pyrsistent as _pyr

from . import register_surfaces as _reg

# The commands that can be run by main:
commands = _pyr.m(
    register_surfaces = _reg.main)

__all__ = ['commands']
