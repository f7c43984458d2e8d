"""Local deterministic agent CLI for integration tests and demos.

Accepts any of the supported CLI command lines (the prompt is the last
argument), reads the referenced input file and answers with a
``structured_output`` envelope:

- task context: comment once per agent, then request review;
- chat context: echo the latest user message, naming the chat on the first reply.
"""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Any

from agentdesk.runner.prompts import CHAT_CONTEXT_HEADING, HEALTH_CHECK_PROMPT, TASK_CONTEXT_HEADING

VERSION = "echo-agent 1.0.0"

_INPUT_PATH_PATTERN = re.compile(r"Read the file at (\S+) and follow")
_ROLE_PATTERN = re.compile(r"You are \*\*(.+?)\*\*\.")
_JSONL_BLOCK_PATTERN = re.compile(r"```jsonl\n(.*?)\n```", re.DOTALL)
_TITLE_LIMIT = 40


def main(argv: list[str] | None = None) -> int:
    """Answer one invocation on stdout."""

    args = list(sys.argv[1:] if argv is None else argv)
    if "--version" in args:
        print(VERSION)
        return 0
    if not args:
        print("echo-agent: prompt required", file=sys.stderr)
        return 2

    prompt = args[-1]
    if prompt == HEALTH_CHECK_PROMPT:
        print("OK")
        return 0

    match = _INPUT_PATH_PATTERN.search(prompt)
    if match is None:
        print("echo-agent: no input file in prompt", file=sys.stderr)
        return 2
    text = Path(match.group(1)).read_text("utf-8")
    if text.startswith(TASK_CONTEXT_HEADING):
        output = task_reply(text)
    elif text.startswith(CHAT_CONTEXT_HEADING):
        output = chat_reply(text)
    else:
        print("echo-agent: unknown input kind", file=sys.stderr)
        return 2
    print(json.dumps({"structured_output": output}, ensure_ascii=False))
    return 0


def task_reply(text: str) -> dict[str, Any]:
    role = _ROLE_PATTERN.search(text)
    name = role.group(1) if role else "Agent"
    comments = _jsonl_records(text, "## Comments")
    if any(comment.get("author") == name for comment in comments):
        return {"actions": [{"type": "change_status", "status": "in_review"}]}
    summary = text.split("### Summary", 1)[-1].split("###", 1)[0].strip()
    return {"actions": [{"type": "comment", "content": f"{name} looked at: {summary}"}]}


def chat_reply(text: str) -> dict[str, Any]:
    messages = _jsonl_records(text, "## Conversation")
    user_messages = [record["message"] for record in messages if record.get("role") == "user"]
    last = user_messages[-1] if user_messages else ""
    output: dict[str, Any] = {"message": f"Echo: {last}"}
    if user_messages and not any(record.get("role") == "agent" for record in messages):
        output["actions"] = [{"type": "rename_chat", "title": user_messages[0][:_TITLE_LIMIT]}]
    return output


def _jsonl_records(text: str, heading: str) -> list[dict[str, Any]]:
    _, _, rest = text.partition(f"\n{heading}\n")
    section = rest.split("\n## ", 1)[0]
    block = _JSONL_BLOCK_PATTERN.search(section)
    if block is None:
        return []
    return [json.loads(line) for line in block.group(1).splitlines() if line.strip()]


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
