"""
Tests for the engine registry and the whisper backend's guards.
"""

import numpy as np
import pytest

from conftest import FakeTranscriber
from parley import engines
from parley.engines import factory
from parley.engines.base import EngineNotAvailableError, TranscriptionError
from parley.engines.whisper_engine import WhisperEngine


class LoadableEngine(FakeTranscriber):
    ENGINE_ID = "test-loadable"
    ENGINE_NAME = "Loadable"
    load_succeeds = True

    def load(self, model_name, device="auto", compute_type="float16"):
        self._model_name = model_name
        self._device = "cpu"
        self._loaded = self.load_succeeds
        return self.load_succeeds


class MissingEngine(FakeTranscriber):
    ENGINE_ID = "test-missing"

    @classmethod
    def is_available(cls):
        return False

    @classmethod
    def get_install_hint(cls):
        return "pip install nothing"


@pytest.fixture
def registered():
    """Register the test engines for one test only."""
    for engine_class in (LoadableEngine, MissingEngine):
        factory.register_engine(engine_class)
    yield
    for engine_class in (LoadableEngine, MissingEngine):
        factory._engine_registry.pop(engine_class.ENGINE_ID, None)
    LoadableEngine.load_succeeds = True


class TestEngineFactory:
    """Tests for create_engine and load_engine."""

    def test_whisper_registered_on_import(self):
        assert factory._engine_registry["whisper"] is WhisperEngine

    def test_public_surface(self):
        """The package exports what the pipeline and CLI use."""
        assert set(engines.__all__) >= {"TranscriptionEngine", "CaptureEngine", "DiarizationEngine", "load_engine"}
        assert not hasattr(engines, "ModelInfo")
        assert not hasattr(factory, "get_available_engines")

    def test_engines_need_no_model_catalogue(self):
        """An engine only has to implement load() and transcribe()."""
        engine = FakeTranscriber(default="hi")
        assert engine.transcribe(np.zeros(16000, dtype=np.float32)).text == "hi"

    def test_unknown_engine(self):
        with pytest.raises(ValueError, match="Unknown engine"):
            factory.create_engine("nope")

    def test_unavailable_engine(self, registered):
        with pytest.raises(EngineNotAvailableError) as excinfo:
            factory.create_engine("test-missing")
        assert "pip install nothing" in str(excinfo.value)

    def test_load_engine_from_config(self, registered):
        engine = factory.load_engine({'engine': "test-loadable", 'local': {'model': "tiny"}})
        assert engine.is_loaded
        assert engine.model_name == "tiny"

    def test_load_engine_defaults_model(self, registered):
        assert factory.load_engine({'engine': "test-loadable"}).model_name == "base"

    def test_load_failure_raises(self, registered):
        LoadableEngine.load_succeeds = False
        with pytest.raises(RuntimeError, match="Failed to load"):
            factory.load_engine({'engine': "test-loadable"})


class TestWhisperEngine:
    def test_transcribe_before_load(self):
        with pytest.raises(TranscriptionError):
            WhisperEngine().transcribe(np.zeros(16000, dtype=np.float32))

    def test_int8_forces_cpu(self):
        assert WhisperEngine._pick_device("cuda", "int8") == "cpu"
        assert WhisperEngine._pick_device("cuda", "float16") == "cuda"
