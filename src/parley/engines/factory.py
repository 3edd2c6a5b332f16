"""
Engine factory for creating transcription engines.

Provides dynamic engine registration based on available dependencies.
"""

import logging
from typing import Dict, Type
from .base import TranscriptionEngine, EngineNotAvailableError

logger = logging.getLogger(__name__)

# Registry of available engines (populated by register_engine)
_engine_registry: Dict[str, Type[TranscriptionEngine]] = {}


def register_engine(engine_class: Type[TranscriptionEngine]) -> Type[TranscriptionEngine]:
    """
    Register an engine class in the registry.

    Use as a decorator:
        @register_engine
        class MyEngine(TranscriptionEngine):
            ENGINE_ID = "my_engine"
    """
    _engine_registry[engine_class.ENGINE_ID] = engine_class
    return engine_class


def create_engine(engine_id: str) -> TranscriptionEngine:
    """
    Create an instance of the specified engine.

    Args:
        engine_id: The engine ID to instantiate

    Returns:
        An instance of the requested engine

    Raises:
        EngineNotAvailableError: If engine is not available
        ValueError: If engine ID is unknown
    """
    if engine_id not in _engine_registry:
        available = list(_engine_registry.keys())
        raise ValueError(f"Unknown engine '{engine_id}'. Available: {available}")

    engine_class = _engine_registry[engine_id]

    if not engine_class.is_available():
        raise EngineNotAvailableError(
            engine_id,
            engine_class.get_install_hint()
        )

    return engine_class()


def load_engine(model_options: dict) -> TranscriptionEngine:
    """
    Create and load the engine described by the model_options config section.

    Raises:
        EngineNotAvailableError: If the engine's dependencies are missing
        RuntimeError: If the model fails to load
    """
    engine_id = model_options.get('engine') or "whisper"
    local = model_options.get('local', {})

    engine = create_engine(engine_id)
    model_name = local.get('model') or "base"
    if not engine.load(model_name, device=local.get('device') or "auto",
                       compute_type=local.get('compute_type') or "int8"):
        raise RuntimeError(f"Failed to load {engine_id} model '{model_name}'")

    logger.info(f"Transcription engine ready: {engine.ENGINE_NAME} ({model_name} on {engine.device})")
    return engine


def _register_engines():
    """Import engine modules to register them."""
    from . import whisper_engine  # noqa: F401


# Register engines on module load
_register_engines()
