"""Decoder prompt construction.

The decoder is primed with ``<|startoftranscript|> <|lang|> <|task|>`` and,
when timestamps are disabled, ``<|notimestamps|>``. English-only models
(``is_multilingual`` false in the generation config) take no language or
task token. Model variants shift the ids of these special tokens
(large-v3-turbo moves <|notimestamps|> from 50363 to 50364, for example),
so every id is resolved from the most specific source available: the
generation config's explicit maps, then its forced decoder ids, then the
vocabulary, then the original checkpoints' ids.
"""

import logging
from typing import List, Optional

from .config import GenerationConfig
from .constants import (
    ENGLISH_TOKEN_ID,
    EOT_TOKEN_ID,
    NO_TIMESTAMPS_TOKEN_ID,
    SOT_TOKEN_ID,
    TRANSCRIBE_TOKEN_ID,
    TRANSLATE_TOKEN_ID,
)
from .data_models import SpecialTokens
from .tokenizer import WhisperTokenizer

logger = logging.getLogger(__name__)


class PromptBuilder:
    """Resolves special-token ids and assembles decoder prompts.

    Attributes:
        tokenizer: Vocabulary used for literal special-token lookups
        generation_config: Special-token information of the model
    """

    def __init__(
        self,
        tokenizer: WhisperTokenizer,
        generation_config: Optional[GenerationConfig] = None,
    ):
        self.tokenizer = tokenizer
        self.generation_config = generation_config or GenerationConfig()

    def special_tokens(self) -> SpecialTokens:
        return SpecialTokens(
            sot=self.tokenizer.token_id("<|startoftranscript|>", SOT_TOKEN_ID),
            eot=self.tokenizer.token_id("<|endoftext|>", EOT_TOKEN_ID),
        )

    def _forced_id(self, position: int, fallback: int) -> int:
        return self.generation_config.forced_decoder_ids.get(position, fallback)

    def language_token(self, language: Optional[str]) -> int:
        if language:
            piece = f"<|{language}|>"
            token_id = self.generation_config.lang_to_id.get(piece)
            if token_id is None:
                token_id = self.tokenizer.token_id(piece)
            if token_id is not None:
                return token_id
            logger.warning(f"Unknown language '{language}', using model default")

        return self._forced_id(1, self.tokenizer.token_id("<|en|>", ENGLISH_TOKEN_ID))

    def task_token(self, translate: bool) -> int:
        task = "translate" if translate else "transcribe"

        token_id = self.generation_config.task_to_id.get(task)
        if token_id is not None:
            return token_id

        # Forced ids encode the model's default task, which is transcription
        forced = self.generation_config.forced_decoder_ids
        if not translate and 2 in forced:
            return forced[2]

        token_id = self.tokenizer.token_id(f"<|{task}|>")
        if token_id is not None:
            return token_id

        return TRANSLATE_TOKEN_ID if translate else TRANSCRIBE_TOKEN_ID

    def no_timestamps_token(self) -> int:
        if self.generation_config.no_timestamps_token_id is not None:
            return self.generation_config.no_timestamps_token_id
        return self.tokenizer.token_id("<|notimestamps|>", NO_TIMESTAMPS_TOKEN_ID)

    def build(
        self,
        language: Optional[str] = None,
        translate: bool = False,
        include_timestamps: bool = False,
    ) -> List[int]:
        """Assemble the initial token sequence for one chunk.

        Args:
            language: Language code such as "en" or "de"; None uses the
                model's configured default
            translate: Translate to English instead of transcribing
            include_timestamps: Let the model emit timestamp tokens

        Returns:
            Prompt token ids
        """
        tokens = [self.special_tokens().sot]
        if self.generation_config.is_multilingual is False:
            if language or translate:
                logger.warning(
                    "Model is English-only; ignoring language and translate options"
                )
        else:
            tokens.append(self.language_token(language))
            tokens.append(self.task_token(translate))
        if not include_timestamps:
            tokens.append(self.no_timestamps_token())

        logger.debug(f"Prompt tokens: {tokens}")
        return tokens
