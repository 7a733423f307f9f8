from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

DEFAULT_HASHTAGS = ["#ad", "#content"]
FALLBACK_HASHTAGS = ["#ai", "#generated", "#socialmedia"]


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """Return the first JSON object embedded in model output, or None."""
    text = text.strip()
    if not text:
        return None
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start: int | None = None
    depth = 0
    in_string = False
    escape = False
    for i, ch in enumerate(text):
        if start is None:
            if ch == "{":
                start = i
                depth = 1
            continue
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    start = None
                    continue
                if isinstance(parsed, dict):
                    return parsed
                start = None
    return None


@dataclass(frozen=True)
class GeneratedCopy:
    hook: str
    caption: str
    hashtags: list[str] = field(default_factory=list)
    video_script: list[Any] = field(default_factory=list)
    structured: bool = True

    def as_dict(self) -> dict[str, Any]:
        return {
            "hook": self.hook,
            "caption": self.caption,
            "hashtags": list(self.hashtags),
            "videoScript": list(self.video_script),
        }


def _normalize_hashtags(value: Any) -> list[str]:
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, list):
        return list(DEFAULT_HASHTAGS)
    tags = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            continue
        tag = item.strip()
        tags.append(tag if tag.startswith("#") else f"#{tag}")
    return tags or list(DEFAULT_HASHTAGS)


def parse_generated_copy(content: str) -> GeneratedCopy:
    """
    Shape text-provider output into hook/caption/hashtags/videoScript.

    Malformed output degrades to line-based parsing instead of failing the generation.
    """
    parsed = extract_json_object(content)
    if parsed is not None:
        hook = parsed.get("hook")
        caption = parsed.get("caption")
        video_script = parsed.get("videoScript") or parsed.get("video_script")
        return GeneratedCopy(
            hook=hook.strip() if isinstance(hook, str) and hook.strip() else "Compelling hook generated",
            caption=caption.strip() if isinstance(caption, str) and caption.strip() else "Engaging caption content",
            hashtags=_normalize_hashtags(parsed.get("hashtags")),
            video_script=video_script if isinstance(video_script, list) else [],
        )

    lines = [line.strip() for line in content.splitlines() if line.strip()]
    return GeneratedCopy(
        hook=lines[0] if lines else "AI-generated compelling hook",
        caption=" ".join(lines[1:4]) or content.strip()[:200],
        hashtags=list(FALLBACK_HASHTAGS),
        video_script=[],
        structured=False,
    )
