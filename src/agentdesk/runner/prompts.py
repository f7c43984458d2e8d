"""Fixed prompt text sent to agent CLIs."""

from __future__ import annotations

TASK_CONTEXT_HEADING = "# Task Context"
CHAT_CONTEXT_HEADING = "# Chat Context"

HEALTH_CHECK_PROMPT = "Reply with the single word OK."

TASK_OUTPUT_INSTRUCTIONS = """\
Work on the task in the current directory as your role describes, then reply
with one JSON object and nothing else:

{"actions": [<action>, ...]}

Each action is one of:
- {"type": "skip"} when there is nothing for you to do right now.
- {"type": "comment", "content": "<markdown>"} to report progress, findings or
  questions for the other agents and the user.
- {"type": "change_status", "status": "in_review"} when the task is complete
  and ready for a human to review.

The actions list must not be empty."""

CHAT_OUTPUT_INSTRUCTIONS = """\
Reply to the latest user message with one JSON object and nothing else:

{"message": "<markdown reply>", "actions": [<action>, ...]}

Both fields are optional. Available actions:
- {"type": "create_agent", "name": "...", "instruction": "...", "cli_type": "claude|gemini|codex|opencode", "order": <int, optional>}
- {"type": "update_agent", "agent_id": "...", "name": "...", "instruction": "...", "cli_type": "..."}
- {"type": "delete_agent", "agent_id": "..."}
- {"type": "reorder_agents", "agent_ids": ["...", "..."]}
- {"type": "update_workspace", "title": "...", "description": "...", "working_directory_mode": "static|temp", "working_directory_path": "..."}
- {"type": "rename_chat", "title": "..."} (only honoured on your first reply)"""

WORKSPACE_ASSISTANT_INSTRUCTION = """\
You are the workspace assistant. Help the user design the team of agents that
works on this workspace's tasks: propose agents with clear, non-overlapping
responsibilities, keep their order sensible, and keep the workspace title and
description accurate. Use actions to apply changes the user agrees to."""

NO_WORKSPACE_INSTRUCTION = "(No workspace instruction)"
NO_OTHER_AGENTS = "(No other agents)"
NO_DESCRIPTION = "(No description provided)"
NO_COMMENTS = "(No comments yet)"
NO_ACTIVITY = "(No activity yet)"
NO_MESSAGES = "(No messages yet)"


def invocation_prompt(input_path: str) -> str:
    """Short positional prompt that points the CLI at the scratch input file."""

    return (
        f"Read the file at {input_path} and follow the instructions in it autonomously. "
        "Respond only with the JSON document it describes."
    )
