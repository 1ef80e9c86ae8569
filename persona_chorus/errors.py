from __future__ import annotations


class PersonaChorusError(Exception):
    """Base class for failures raised by the orchestration stack."""


class ConfigurationError(PersonaChorusError, ValueError):
    """Startup cannot continue: bad settings, persona directory or unreachable store."""


class ModelCallError(PersonaChorusError, RuntimeError):
    """The language model errored or produced no usable text."""


class DeliveryError(PersonaChorusError, RuntimeError):
    """The transport rejected an outbound chunk."""

    def __init__(self, channel_id: str, message: str) -> None:
        super().__init__(f"delivery to channel={channel_id} failed: {message}")
        self.channel_id = channel_id


class PersistenceError(PersonaChorusError, RuntimeError):
    """A write to the persona store failed."""


class ImageAnalysisError(PersonaChorusError, RuntimeError):
    """Image understanding failed; never carries a partial answer."""
