"""Human-friendly output formatter for plans, apply results and state."""

import json
import os
from typing import Any, Dict, List, Optional
from ..executor.results import ApplyResult
from ..planner.models import Action, Plan, PlanStep
from ..planner.planner import plan_summary_line
from ..state.models import ResourceState

_SYMBOLS = {
    Action.CREATE: "+",
    Action.UPDATE: "~",
    Action.REPLACE: "-/+",
    Action.DESTROY: "-",
    Action.NOOP: " ",
}


def _use_ascii(ascii_mode: Optional[bool] = None) -> bool:
    """Resolve whether to use ASCII output (checked at format time)."""
    if ascii_mode is not None:
        return bool(ascii_mode)
    return os.environ.get("CONVERGE_ASCII", "").lower() in ("1", "true", "yes")


def _section(title: str, width: int = 65, ascii_mode: bool = False) -> List[str]:
    """Return section divider."""
    h = ("-" if ascii_mode else "─") * width
    return [h, title, h]


def _render(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value)
    return json.dumps(value, sort_keys=True, default=str)


def _format_step(step: PlanStep) -> List[str]:
    symbol = _SYMBOLS[step.action]
    header = f"  {symbol} {step.address}"
    if step.reason:
        header += f"  ({step.reason})"
    lines = [header]
    for key, change in step.diff.items():
        if step.action == Action.CREATE:
            lines.append(f"      {key} = {_render(change.after)}")
        elif step.action == Action.DESTROY:
            lines.append(f"      {key} = {_render(change.before)}")
        else:
            lines.append(f"      {key}: {_render(change.before)} -> {_render(change.after)}")
    return lines


def format_plan(plan: Plan, ascii_mode: Optional[bool] = None) -> str:
    """Render a plan the way it will be executed."""
    ascii_mode = _use_ascii(ascii_mode)
    if not plan.has_changes:
        return "No changes. Infrastructure matches the declarations."

    lines = _section("Execution plan", ascii_mode=ascii_mode)
    lines.append("")
    for step in plan.changes:
        lines.extend(_format_step(step))
    lines.append("")
    lines.append(f"Plan: {plan_summary_line(plan)}.")
    return "\n".join(lines)


def format_apply_result(result: ApplyResult, ascii_mode: Optional[bool] = None) -> str:
    """Render the outcome of an apply run."""
    ascii_mode = _use_ascii(ascii_mode)
    ok = "[OK]" if ascii_mode else "✅"
    bad = "[FAILED]" if ascii_mode else "❌"
    skip = "[SKIPPED]" if ascii_mode else "⏭️ "

    lines: List[str] = []
    for address, action in result.applied.items():
        lines.append(f"{ok} {address}: {action}")
    for address, message in result.failed.items():
        lines.append(f"{bad} {address}: {message}")
    for address, reason in result.skipped.items():
        lines.append(f"{skip} {address}: skipped ({reason})")

    if lines:
        lines.append("")
    status = "complete" if result.success else ("cancelled" if result.cancelled else "finished with errors")
    lines.append(
        f"Apply {status}! Resources: {len(result.applied)} applied, {len(result.failed)} failed, "
        f"{len(result.skipped)} skipped, {len(result.unchanged)} unchanged."
    )
    return "\n".join(lines)


def format_state_list(records: Dict[Any, ResourceState]) -> str:
    """One address per line, sorted."""
    return "\n".join(f"{address}  ({record.status.value})" for address, record in sorted(records.items(), key=lambda kv: str(kv[0])))


def format_state_record(record: ResourceState) -> str:
    """Full record of one address."""
    lines = [
        f"# {record.address}",
        f"provider_id  = {record.provider_id}",
        f"status       = {record.status.value}",
        f"fingerprint  = {record.fingerprint}",
        f"updated_at   = {record.updated_at.isoformat()}",
    ]
    if record.dependencies:
        lines.append(f"dependencies = {', '.join(str(d) for d in record.dependencies)}")
    lines.append("attributes:")
    for key in sorted(record.attributes):
        lines.append(f"  {key} = {_render(record.attributes[key])}")
    lines.append("outputs:")
    for key in sorted(record.outputs):
        lines.append(f"  {key} = {_render(record.outputs[key])}")
    return "\n".join(lines)
