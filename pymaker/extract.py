import re

# Opening fence with an optional language tag, then the body up to the first closing fence.
FENCED_BLOCK_RE = re.compile(r"```[\w+-]*[ \t]*\r?\n(.*?)\r?\n[ \t]*```", re.DOTALL)


def extract_python_code(response: str) -> str:
    """
    Pull the runnable code out of a model reply.
    The first fenced block wins; with no fence the whole reply is treated as code.
    """
    m = FENCED_BLOCK_RE.search(response or "")
    if m:
        return m.group(1).strip()
    return (response or "").strip()


def has_code(response: str) -> bool:
    return bool(extract_python_code(response))
