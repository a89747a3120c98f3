"""Builds the provider message list for a new turn."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from chat_engine.engine.models import (
    AUTO_LANGUAGE,
    Attachments,
    LanguageStyle,
    Role,
    Turn,
    WireMessage,
)
from chat_engine.engine.options import SamplingOptions

HISTORY_WINDOW = 5

INLINE_LANGUAGE_DIRECTIVE = "\nplease answer in {language}"
DEFAULT_SYSTEM_LANGUAGE_PROMPT = "you are a help assistant and answer the question in {language}"


@dataclass
class AssembledConversation:
    messages: list[WireMessage]
    options: SamplingOptions = field(default_factory=SamplingOptions)


class ConversationAssembler:
    """Pure, synchronous, no I/O.

    Multi-modal turns are sent without textual context: as soon as the new
    turn carries an image, history replay is skipped entirely.
    """

    def __init__(
        self,
        history_window: int = HISTORY_WINDOW,
        system_language_prompt: str = DEFAULT_SYSTEM_LANGUAGE_PROMPT,
    ) -> None:
        self._window = history_window
        self._system_prompt = system_language_prompt

    def assemble(
        self,
        content: str,
        *,
        history: Sequence[Turn] = (),
        response_language: str = AUTO_LANGUAGE,
        style: LanguageStyle = LanguageStyle.INLINE,
        attachments: Attachments | None = None,
        role: Role = Role.USER,
        options: SamplingOptions | None = None,
    ) -> AssembledConversation:
        attachments = attachments or Attachments()
        wants_language = response_language != AUTO_LANGUAGE

        messages: list[WireMessage] = []
        if wants_language and style is LanguageStyle.SYSTEM:
            messages.append(WireMessage(
                role=Role.SYSTEM,
                content=self._system_prompt.format(language=response_language),
            ))

        if not attachments.has_images:
            messages.extend(self._history(history))

        new_content = self._with_file(content, attachments)
        if wants_language and style is LanguageStyle.INLINE:
            new_content += INLINE_LANGUAGE_DIRECTIVE.format(language=response_language)

        messages.append(WireMessage(
            role=role,
            content=new_content,
            images=list(attachments.images) if attachments.has_images else None,
        ))
        return AssembledConversation(messages=messages, options=options or SamplingOptions())

    def _history(self, history: Sequence[Turn]) -> list[WireMessage]:
        if self._window <= 0:
            return []
        recent = list(history)[-self._window:]
        # attachments are never replayed from history
        return [WireMessage(role=turn.role, content=turn.content) for turn in recent]

    @staticmethod
    def _with_file(content: str, attachments: Attachments) -> str:
        file = attachments.file
        if file is None or not file.extracted_text:
            return content
        return f"{content}\n\n[File: {file.name}]\n```\n{file.extracted_text}\n```"
