"""Prompt enhancement, response cleaning and stream decoding."""

from .prompt_enhancer import enhance
from .response_cleaner import clean, is_valid_json, repair
from .stream_decoder import StreamCallback, StreamDecoder, StreamState, submit_background
