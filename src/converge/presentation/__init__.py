"""Presentation layer - human-readable rendering of plans, results and state."""

from .formatter import format_apply_result, format_plan, format_state_list, format_state_record

__all__ = ["format_apply_result", "format_plan", "format_state_list", "format_state_record"]
