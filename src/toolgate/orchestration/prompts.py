"""Prompt templates for the four model-backed stages of a turn.

Templates are filled with ``str.format``; literal braces are doubled.
"""

ROUTER_SYSTEM = "You are a routing agent that responds only with valid JSON."

ROUTER_PROMPT = """Decide whether the user's latest message can be answered directly or needs external tools (running commands, reading or writing files, calling HTTP endpoints).

CONVERSATION SO FAR:
{conversation_summary}

USER MESSAGE:
{user_message}

RULES:
1. Set needs_tools to true only when answering requires acting on or reading from the outside world.
2. Questions that can be answered from general knowledge or the conversation need no tools.
3. high_level_goal states in one sentence what the tools must achieve. Leave it empty when no tools are needed.

Respond with a JSON object:
{{
  "needs_tools": true,
  "high_level_goal": "List the files in /workspace/project",
  "rationale": "The user asked about files on disk"
}}

Return ONLY the JSON object, no other text."""

SELECTOR_SYSTEM = "You are a tool selection agent that responds only with valid JSON."

SELECTOR_PROMPT = """Plan the tool calls that achieve this goal.

GOAL: {high_level_goal}

AVAILABLE TOOLS:
{tools}

RULES:
1. Use only tools from the list above, referenced by their slug.
2. Arguments must follow each tool's schema.
3. Use as few steps as possible. Steps run in order, one at a time.
4. If the goal cannot be reached without information you do not have, return no steps and list what is missing in inputs_needed.

Respond with a JSON object:
{{
  "selected_tool_ids": ["fs.list"],
  "plan_steps": [
    {{"tool_id": "fs.list", "args": {{"path": "/workspace/project"}}, "why": "See what the project contains"}}
  ],
  "inputs_needed": []
}}

Return ONLY the JSON object, no other text."""

SUMMARIZER_SYSTEM = "You summarize tool execution results and respond only with valid JSON."

SUMMARIZER_PROMPT = """These tool steps were executed for the user, in order:

{steps}

Summarize what happened. Report failures plainly. Do not invent results that are not in the steps.

Respond with a JSON object:
{{
  "short_summary": "One or two sentences",
  "key_facts": ["Concrete fact taken from the results"],
  "links": ["Any URLs worth showing the user"],
  "confidence": 0.9
}}

confidence is a number between 0 and 1 saying how completely the results answer the goal.
Return ONLY the JSON object, no other text."""

COMPOSER_SYSTEM = "You are a helpful assistant. Answer clearly and concisely."

COMPOSER_DIRECT_PROMPT = """CONVERSATION SO FAR:
{conversation_summary}

USER MESSAGE:
{user_message}

Reply to the user's message."""

COMPOSER_SUMMARY_PROMPT = """USER MESSAGE:
{user_message}

Tools were run to answer this message. Outcome:
{summary}

Write the reply to the user based on this outcome. Mention failures honestly. If confidence is below 0.7, say that the result may be incomplete."""
