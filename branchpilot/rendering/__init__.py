"""Prompt rendering.

Prompts sent to the automation channel are Jinja2 templates rendered in a
sandboxed environment. See :mod:`branchpilot.rendering.prompts`.
"""
