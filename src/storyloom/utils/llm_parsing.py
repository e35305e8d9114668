# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Cleanup of generated text before it is stored: reasoning blocks, code fences
and placeholder markers that models or providers leave behind.
"""

from __future__ import annotations

import re

NO_CONTENT_MARKER = "[NO CONTENT]"

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_thinking_tags(content: str) -> str:
    """Strip thinking/analysis tags from content, returning only the final message."""
    if not content:
        return content

    # Handle <|channel|>analysis<|message|>...<|end|><|start|>assistant<|channel|>final<|message|>
    if "<|channel|>analysis<|message|>" in content:
        final_match = re.search(
            r"<\|channel\|>final<\|message\|>(.*)", content, re.DOTALL
        )
        if final_match:
            return final_match.group(1).strip()
        content = re.sub(
            r"<\|channel\|>analysis<\|message\|>.*?<\|end\|>",
            "",
            content,
            flags=re.DOTALL,
        )
        content = re.sub(
            r"<\|start\|>assistant<\|channel\|>final<\|message\|>", "", content
        )
        return content.strip()

    content = re.sub(
        r"<(thought|thinking|think)>.*?</\1>", "", content, flags=re.DOTALL
    )
    return content.strip()


def cleanup_llm_response(content: str) -> str:
    """Remove known artifacts from a finished generation.

    Drops ``[NO CONTENT]`` markers emitted for empty deltas, markdown code
    fences (```json ... ```) wrapped around structured replies, and thinking
    blocks; surrounding whitespace is trimmed.
    """
    if not content:
        return ""
    content = content.replace(NO_CONTENT_MARKER, "")
    content = _FENCE_PATTERN.sub("", content)
    return strip_thinking_tags(content).strip()
