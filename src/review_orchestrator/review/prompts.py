# src/review_orchestrator/review/prompts.py
from dataclasses import dataclass
from review_orchestrator.models.review import Chunk


DEFAULT_RULES = """- Bugs: incorrect logic, unhandled errors, off-by-one mistakes, broken edge cases.
- Security: injection, unsafe deserialization, leaked secrets, missing authorization checks.
- Performance: needless work in hot paths, N+1 queries, unbounded memory growth.
- Readability: unclear naming, dead code, overly complex functions.
- Best practices: missing tests for new behaviour, inconsistent error handling.
- If the merge request description states requirements, check the code meets them."""


SYSTEM_PROMPT = """You are an AI code reviewer. Review the code changes of a merge request.

Respond in language: {language}.

Review rules:
{rules}

Important:
- Only comment on the changed lines (from the diff)
- Reference findings as `path:line` using line numbers of the NEW file
- Be specific and actionable in your comments
- Group findings by file and mark each with a severity: critical, high, medium or low
- If the code looks good, say so in one sentence
- Respond in Markdown, without a top-level heading"""


USER_PROMPT = """Merge request: {title}
{description_block}
All files changed in this merge request:
{file_list}

You are seeing part {part} of {total} of the diff. Other parts are reviewed separately,
so do not report code as missing only because it is not shown here.

Files in this part:
{chunk_files}

Changes (diff):
```diff
{diff_content}
```

Review the changes in this part."""


@dataclass(frozen=True)
class PromptContext:
    title: str
    description: str
    file_list: tuple[str, ...]
    chunk_index: int
    total_chunks: int
    language: str = "en"


@dataclass(frozen=True)
class BuiltPrompt:
    text: str
    default_rules: bool


def build_review_prompt(chunk: Chunk, rules: str | None, context: PromptContext) -> BuiltPrompt:
    """Build the complete prompt for one chunk.

    `rules` is None when the rules document could not be found; the built-in
    DEFAULT_RULES are used then and the result is flagged. Empty rules text is
    used as is.
    """
    default_rules = rules is None
    system = SYSTEM_PROMPT.format(
        language=context.language,
        rules=DEFAULT_RULES if default_rules else rules,
    )

    description_block = ""
    if context.description and context.description.strip():
        description_block = f"\nTask description (from MR):\n```\n{context.description.strip()}\n```\n"

    user = USER_PROMPT.format(
        title=context.title,
        description_block=description_block,
        file_list="\n".join(f"- {path}" for path in context.file_list),
        part=context.chunk_index + 1,
        total=context.total_chunks,
        chunk_files="\n".join(f"- {path}" for path in chunk.paths),
        diff_content="\n".join(f.diff.rstrip("\n") for f in chunk.files),
    )

    return BuiltPrompt(text=f"{system}\n\n{user}", default_rules=default_rules)
