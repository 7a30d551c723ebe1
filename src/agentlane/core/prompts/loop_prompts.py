"""
Loop Prompts - instruction messages injected by the agentic loop.

These are appended to session history as user messages when the loop
needs to steer the model: truncated action blocks, blocked end actions,
stalls, hallucinated code and continuation after executed actions.
"""

TRUNCATION_CONTINUE_PROMPT = (
    "Your response was truncated mid-<{tag}> block (output token limit reached). "
    "Continue EXACTLY where you left off. Output only the remaining content to "
    "complete the <{tag}> block and close it with </{tag}>."
)

END_BLOCKED_PROMPT = """BLOCKED: You cannot finish. The following files have unresolved edit failures: {paths}

You MUST either:
1. Retry the edit using EXACT content from the read output already in your context (do NOT re-read the file)
2. Use write to overwrite the file if the edit is too complex
3. Honestly acknowledge in your end message that the edit could not be applied

Do NOT claim success when edits have failed."""

CONTINUE_ACTION_PROMPT = (
    "Continuing task as requested by the continue action.\n\n{results}\n\n"
    "<system-instruction>Continue the task.</system-instruction>"
)

EDIT_FAILED_INSTRUCTION = (
    "EDIT FAILED on: {paths}\n"
    "Copy EXACT content from the read output that you have in your context."
)
ERROR_INSTRUCTION = "ERROR DETECTED. Fix it now."
CONTINUE_INSTRUCTION = "Continue or <end> to finish."
ITERATION_WARNING = "\n[WARNING] {iteration} iterations. Use <continue/> or <end> to finish."

STALL_NUDGE_PROMPT = """[stall-nudge] Your last response did not perform any action.

Original task: {task}

Respond with exactly one concrete tool call that makes progress, or end explicitly with a short summary of what was done."""

STALL_CHANGE_STRATEGY_PROMPT = """[stall-nudge] You repeated the same response without making progress. Change strategy now.

Original task: {task}

Do not repeat your previous answer. Either make one concrete tool call using a different approach, or end explicitly and state what is blocking you."""

MALFORMED_EDIT_PROMPT = """ERROR: Malformed <edit> tag. You must use the unified diff format exactly:

<edit path="file.py">
@@ -startLine,count @@
-line to remove
+line to add
 context line (unchanged, starts with a space)
</edit>

- startLine: 1-based line number from the read output where this hunk begins.
- count: number of existing lines this hunk spans (context + removed). Use 0 for pure insertion.
- Every line inside a hunk MUST start with a space, "-" or "+".

Read the file first to see actual line numbers and content."""

RAW_CODE_PROMPT = (
    "ERROR: You outputted code directly instead of using actions. "
    'Use <read path="..."/> to check files, then <edit path="...">...</edit> '
    "to make changes. Do NOT hallucinate file contents."
)
