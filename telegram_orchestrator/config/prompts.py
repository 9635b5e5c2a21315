"""Texts shown to the operator in the control channel.

Telegram legacy Markdown is used for every bubble, so anything that comes from
a user or a model goes through :func:`escape_markdown` first.
"""

APPROVE_LABEL = "✅ Approve"
REPHRASE_LABEL = "🔄 Rephrase"
REJECT_LABEL = "❌ Reject"

DRAFT_BUBBLE = "*AI Draft Suggestion for @{name}*\n\n{text}\n\n"
REPHRASED_DRAFT_BUBBLE = "*AI Draft Suggestion for @{name}*\n_(Rephrased)_\n\n{text}\n\n"

REPHRASE_PROMPT = (
    "🔄 *Rephrase Mode*\n\n"
    "Please send me the guidance for rephrasing "
    '(e.g., "the name of user is John")'
)

REJECTED_MARKER = "❌ *Rejected*"

REGENERATE_FAILED = "❌ Failed to regenerate: {error}"
DRAFT_NOT_FOUND = "❌ Draft not found for {target_id}. It was already handled or replaced by a newer draft."
REPHRASE_NOT_FOUND = "❌ Nothing to rephrase for {target_id}. The draft was already handled or replaced by a newer one."
CALLBACK_FAILED = "❌ Could not handle button: {error}"

GUIDANCE_PREFIX = "Additional guidance: "

_MARKDOWN_SPECIAL = ("_", "*", "`", "[")


def escape_markdown(text: str) -> str:
    for ch in _MARKDOWN_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text


def draft_bubble(name: str, text: str, *, rephrased: bool = False) -> str:
    template = REPHRASED_DRAFT_BUBBLE if rephrased else DRAFT_BUBBLE
    return template.format(name=escape_markdown(name), text=escape_markdown(text))
