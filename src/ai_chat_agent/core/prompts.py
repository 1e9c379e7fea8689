"""Prompt text and formatting for decisions and reply generation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..interfaces.llm import Turn
    from ..models.message import Message
    from ..models.tools import ToolAttempt, ToolResult

# Messages starting with this prefix are commands for other bots
COMMAND_PREFIX = "!"

DECISION_PROMPT = """\
You are evaluating whether {name} should respond to this conversation.

{name} is a regular member of this chat. They do not need to be addressed \
to participate and chime in when they have something worth saying.

Consider responding when:
- There is something interesting, controversial, or worth commenting on
- Someone asks a general question or seeks opinions
- A new voice would feel natural in the discussion

Consider NOT responding when:
- The conversation is clearly between specific people
- {name} spoke recently (avoid dominating the conversation)
- There is nothing interesting to add, or joining in would feel forced

You MUST respond with valid JSON only:
{{
  "should_respond": true or false,
  "reply_to_message_id": "id of the message to reply to" or null,
  "reason": "brief explanation of your decision"
}}

If reply_to_message_id is set, {name} replies to that specific message.
If it is null and should_respond is true, {name} posts a standalone message."""

GENERATION_FORMAT = """\

You can use tools before answering:
- "python": run a short Python 3 program; set "code". Only printed output is returned.
- "web_search": search the web; set "query".
- "web_fetch": read a web page; set "url".

Respond with valid JSON only, in exactly this structure:
{
  "message": "your chat reply",
  "mood": "one word describing your mood",
  "needs_tool": false,
  "continue_iterating": false,
  "tool_request": null
}

To use a tool set "needs_tool" and "continue_iterating" to true and set \
"tool_request" to {"tool": "<name>", "code": "...", "query": "...", "url": "..."}, \
filling in only the field the tool needs. You will receive the result and may \
request another tool or finish. When you are done, set "needs_tool" to false \
and put the final reply in "message". Keep replies under {limit} characters."""

REFLECTION_PROMPT = """\
Tool result for {tool} (attempt {iteration}):
{status}
{body}

Attempts so far:
{history}

Reflect on what worked and what did not before deciding the next step. \
If a tool failed, try a different approach or give your best answer. \
{remaining}Respond with the same JSON structure as before."""


def format_window(messages: Sequence[Message]) -> str:
    """Render a context window as one line per message."""
    return "\n".join(message.render() for message in messages)


def build_decision_request(
    persona_name: str,
    window: Sequence[Message],
    ratio: float,
    soft_ceiling: float,
) -> tuple[str, str]:
    """Build the system prompt and user turn for a decision call.

    Returns:
        (system_prompt, user_prompt)
    """
    system_prompt = DECISION_PROMPT.format(name=persona_name)
    ratio_line = (
        f"{persona_name}'s share of recent messages: {ratio * 100:.0f}%. "
        f"If above {soft_ceiling * 100:.0f}%, be more reluctant to respond."
    )
    user_prompt = (
        "Here is the recent conversation (message IDs in brackets):\n\n"
        f"{format_window(window)}\n\n"
        f"{ratio_line}\n\n"
        f"Should {persona_name} respond to this conversation? "
        "Remember to respond with valid JSON only."
    )
    return system_prompt, user_prompt


def build_generation_system_prompt(persona_prompt: str, reply_limit: int) -> str:
    return persona_prompt + "\n" + GENERATION_FORMAT.replace("{limit}", str(reply_limit))


def build_conversation_turns(
    window: Sequence[Message],
    agent_user_id: str | None,
    persona_name: str,
    reply_to: Message | None = None,
) -> list[Turn]:
    """Turn a context window into alternating user/assistant turns.

    Agent messages become assistant turns; everyone else is a user turn
    prefixed with the author's name. Mentions of the agent are replaced
    with its name.
    """
    mention = re.compile(rf"<@{re.escape(agent_user_id)}>") if agent_user_id else None
    turns: list[Turn] = []
    for message in window:
        if message.text.startswith(COMMAND_PREFIX):
            continue
        text = mention.sub(persona_name, message.text) if mention else message.text
        if message.is_agent:
            turns.append({"role": "assistant", "content": text})
            continue
        line = f"{message.author_name}: {text}"
        extra = message.annotations()
        turns.append({"role": "user", "content": f"{line} {extra}" if extra else line})

    if reply_to is not None:
        turns.append(
            {
                "role": "user",
                "content": (
                    f"(You are replying to [{reply_to.message_id}] "
                    f"{reply_to.author_name}: {reply_to.text})"
                ),
            }
        )
    return turns


def build_reflection_turn(
    attempt: ToolAttempt,
    result: ToolResult,
    history: Sequence[ToolAttempt],
    remaining: int,
    preview_chars: int,
) -> str:
    """Build the turn that feeds a tool result back to the generator."""
    if result.success:
        status = "SUCCESS"
        body = truncate(result.output, preview_chars * 4) or "(no output)"
    else:
        status = "FAILED"
        body = truncate(result.error or "unknown error", preview_chars * 2)
        if result.output:
            body += "\nPartial output:\n" + truncate(result.output, preview_chars)

    remaining_line = (
        f"You may use at most {remaining} more tool call(s). "
        if remaining > 0
        else "No more tool calls are allowed; give your final reply now. "
    )
    return REFLECTION_PROMPT.format(
        tool=attempt.tool,
        iteration=attempt.iteration,
        status=status,
        body=body,
        history="\n".join(item.summary_line() for item in history),
        remaining=remaining_line,
    )


def truncate(text: str, limit: int, marker: str = "...") -> str:
    """Cut text to at most ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    if limit <= len(marker):
        return text[:limit]
    return text[: limit - len(marker)] + marker
