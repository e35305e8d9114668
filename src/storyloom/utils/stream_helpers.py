# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Stateful filtering of streamed model output.

Reasoning models interleave ``<think>`` blocks or harmony-style channel tags
with the prose. The filter routes every piece to a channel so that only the
``final`` channel reaches a story segment while chunks keep their order.
"""

import re
from typing import Dict, List

# Longest prefix kept back while waiting for a tag to complete.
MAX_PENDING_TAG = 150


class ChannelFilter:
    """Stateful filter to separate thinking/analysis from final content."""

    def __init__(self):
        self.current_channel = "final"
        self.buffer = ""
        self.tag_pattern = re.compile(
            r"(<\|channel\|>(.*?)<\|message\|>|"
            r"<\|start\|>assistant.*?<\|message\|>|"
            r"<\|end\|>|"
            r"<(thought|thinking|think)>|"
            r"</(thought|thinking|think)>)",
            re.IGNORECASE | re.DOTALL,
        )

    def _emit(self, results: List[Dict[str, str]], content: str) -> None:
        if content:
            results.append({"channel": self.current_channel, "content": content})

    def feed(self, chunk: str) -> List[Dict[str, str]]:
        """Process a chunk and return a list of (channel, content) pairs."""
        self.buffer += chunk
        results: List[Dict[str, str]] = []

        while True:
            match = self.tag_pattern.search(self.buffer)
            if not match:
                # Everything before a possible tag start is safe to release.
                first_bracket = self.buffer.find("<")
                if first_bracket == -1:
                    self._emit(results, self.buffer)
                    self.buffer = ""
                elif first_bracket > 0:
                    self._emit(results, self.buffer[:first_bracket])
                    self.buffer = self.buffer[first_bracket:]

                if len(self.buffer) > MAX_PENDING_TAG:
                    # Not a tag after all; release one character to keep progress.
                    self._emit(results, self.buffer[0])
                    self.buffer = self.buffer[1:]
                    continue
                break

            start, end = match.span()
            self._emit(results, self.buffer[:start])

            tag_text = match.group(0)
            if re.match(r"<(thought|thinking|think)>", tag_text, re.IGNORECASE):
                self.current_channel = "thought"
            elif re.match(r"</(thought|thinking|think)>", tag_text, re.IGNORECASE):
                self.current_channel = "final"
            elif tag_text.startswith("<|channel|>"):
                channel_name = match.group(2) or ""
                if "<|constrain|>" in channel_name:
                    channel_name = channel_name.split("<|constrain|>", 1)[0]
                if channel_name.strip():
                    self.current_channel = channel_name.strip()
            elif tag_text.startswith("<|start|>assistant") and "<|channel|>" in tag_text:
                channel_name = tag_text.split("<|channel|>", 1)[1]
                channel_name = channel_name.split("<|message|>", 1)[0]
                if "<|constrain|>" in channel_name:
                    channel_name = channel_name.split("<|constrain|>", 1)[0]
                self.current_channel = channel_name.strip()
            elif "<|end|>" in tag_text:
                self.current_channel = "final"

            self.buffer = self.buffer[end:]

        return results

    def flush(self) -> List[Dict[str, str]]:
        """Flush the buffer and return any remaining content."""
        results: List[Dict[str, str]] = []
        self._emit(results, self.buffer)
        self.buffer = ""
        return results


def final_text(parts: List[Dict[str, str]]) -> str:
    return "".join(p["content"] for p in parts if p["channel"] == "final")
