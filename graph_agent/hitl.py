"""
Human-in-the-Loop Helpers
=========================
Turning a ProposedAction into an approval prompt, and a free-text reply into
a decision. Used by conversational front ends (demo.py) that do not have an
approve/reject button.
"""
import json
import re

from .state import ProposedAction

_YES_WORDS = frozenset({"yes", "y", "confirm", "proceed", "ok", "okay", "sure", "go", "yep", "approve", "oui"})
_NO_WORDS  = frozenset({"no", "n", "cancel", "stop", "abort", "nope", "reject", "non"})
_YES_PHRASES = ("do it", "go ahead")
_NO_PHRASES  = ("don't", "do not")


def is_confirmation(message: str) -> bool | None:
    """
    Parse a yes/no reply from the user.

    Returns:
        True  confirmed
        False rejected
        None  ambiguous (caller decides how to handle)
    """
    lower = message.lower().strip()
    if any(p in lower for p in _NO_PHRASES):
        return False
    words = set(re.findall(r"[a-z']+", lower))
    if words & _NO_WORDS:
        return False
    if words & _YES_WORDS or any(p in lower for p in _YES_PHRASES):
        return True
    return None


def _describe_one(action: ProposedAction) -> str:
    kind = action["type"]
    p    = action["payload"]

    if kind == "create_node":
        return (
            f"create a **{p['type_key']}** node on sheet {p['sheet']} "
            f"at ({p['pos_x']:g}, {p['pos_y']:g})"
        )
    if kind == "create_edge":
        label = f" labelled \"{p['label']}\"" if p.get("label") else ""
        return (
            f"connect **{p['source_key']}**:{p['source_handle']} to "
            f"**{p['target_key']}**:{p['target_handle']}{label}"
        )
    if kind == "delete_node":
        return f"delete node **{p['node_key']}** and every edge attached to it"
    if kind == "update_node":
        return f"update node **{p['node_key']}**: {json.dumps(p['changes'])}"
    if kind == "move_node":
        return f"move node **{p['node_key']}** to ({p['pos_x']:g}, {p['pos_y']:g})"
    if kind == "delete_edge":
        return f"delete edge **{p['edge_key']}**"
    if kind == "batch":
        return f"apply {len(p['actions'])} changes"
    return f"perform `{kind}`"


def describe_proposed_action(action: ProposedAction) -> str:
    """Human-readable approval prompt for a pending action."""
    lines = [f"I'm ready to {_describe_one(action)}."]
    if action["type"] == "batch":
        lines += [f"  {i}. {_describe_one(sub)}" for i, sub in enumerate(action["payload"]["actions"], 1)]
    if action.get("reason"):
        lines.append(f"\nReason: {action['reason']}")
    lines.append("\nShall I proceed? (yes / no)")
    return "\n".join(lines)


def build_resolution_result(status: str, message: str) -> str:
    """Tool result content that closes a gated tool call."""
    return json.dumps({"status": status, "message": message})
