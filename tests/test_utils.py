"""
Unit tests for utilities (audio helpers, config loading, settings store).
"""

import pytest # pyright: ignore[reportMissingImports]
import numpy as np

from utils.audio_io import (
    calculate_peak,
    calculate_rms,
    float32_to_int16,
    int16_to_float32,
    load_audio,
    resample_linear,
    save_audio,
    to_mono,
)
from utils.config_loader import get_nested_config, load_config, merge_config
from utils.settings_store import InMemorySettingsStore, SqliteSettingsStore


class TestAudioHelpers:
    """Test PCM and resampling helpers."""

    def test_resample_length(self):
        audio = np.zeros(48000, dtype=np.float32)
        assert len(resample_linear(audio, 48000, 16000)) == 16000
        assert len(resample_linear(audio, 48000, 44100)) == 44100

    def test_resample_same_rate(self):
        audio = np.linspace(-1, 1, 100).astype(np.float32)
        assert np.array_equal(resample_linear(audio, 16000, 16000), audio)

    def test_resample_preserves_ramp(self):
        """Linear input stays linear after interpolation."""
        audio = np.linspace(0, 1, 32000).astype(np.float32)
        resampled = resample_linear(audio, 32000, 16000)
        assert resampled[0] == pytest.approx(0.0)
        assert np.all(np.diff(resampled) >= 0)

    def test_int16_conversion_extremes(self):
        pcm = float32_to_int16(np.array([-1.0, 0.0, 1.0, 2.0, -3.0], dtype=np.float32))
        assert pcm.dtype == np.int16
        assert list(pcm) == [-32768, 0, 32767, 32767, -32768]

        back = int16_to_float32(pcm)
        assert back.dtype == np.float32
        assert list(back) == [-1.0, 0.0, 1.0, 1.0, -1.0]

    def test_levels(self):
        audio = np.full(1000, 0.5, dtype=np.float32)
        assert calculate_rms(audio) == pytest.approx(0.5)
        assert calculate_peak(-audio) == pytest.approx(0.5)
        assert calculate_rms(np.zeros(0)) == 0.0

    def test_to_mono(self):
        stereo = np.stack([np.ones(10), np.zeros(10)], axis=1)
        mono = to_mono(stereo)
        assert mono.shape == (10,)
        assert mono[0] == pytest.approx(0.5)

    def test_wav_round_trip(self, tmp_path, make_speech):
        audio = make_speech(1.0)
        path = save_audio(tmp_path / 'rec' / 'checkin.wav', audio, 16000)
        loaded, sr = load_audio(path, sample_rate=16000)

        assert sr == 16000
        assert len(loaded) == len(audio)
        assert np.max(np.abs(loaded - audio)) < 1e-3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_audio(tmp_path / 'nope.wav')


class TestConfigLoader:
    """Test YAML configuration loading."""

    def test_default_config(self):
        config = load_config()
        assert get_nested_config(config, 'audio.vad.backend') == 'silero'
        assert get_nested_config(config, 'fusion.semantic_timeout_sec') == 10.0
        assert get_nested_config(config, 'audio.processing.min_speech_seconds') == 3.0

    def test_missing_key_default(self):
        assert get_nested_config({'a': {'b': 1}}, 'a.c.d', default=7) == 7

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / 'missing.yaml')

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text('')
        assert load_config(path) == {}

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text('- a\n- b\n')
        with pytest.raises(ValueError):
            load_config(path)

    def test_merge_is_recursive(self):
        base = {'audio': {'vad': {'backend': 'silero', 'threshold': 0.5}}, 'x': 1}
        merged = merge_config(base, {'audio': {'vad': {'backend': 'energy'}}})

        assert merged['audio']['vad'] == {'backend': 'energy', 'threshold': 0.5}
        assert merged['x'] == 1
        assert base['audio']['vad']['backend'] == 'silero'


@pytest.fixture(params=['memory', 'sqlite'])
def store(request, tmp_path):
    if request.param == 'memory':
        return InMemorySettingsStore()
    return SqliteSettingsStore(str(tmp_path / 'settings.db'))


class TestSettingsStore:
    """Test both settings backends against the same contract."""

    def test_missing_key(self, store):
        assert store.get('default') is None
        assert store.update('default', {'a': 1}) == 0
        assert store.get('default') is None

    def test_put_then_update(self, store):
        store.put('default', {'a': 1, 'b': {'c': 2}})
        assert store.update('default', {'b': {'d': 3}}) == 1
        assert store.get('default') == {'a': 1, 'b': {'d': 3}}

    def test_records_are_isolated(self, store):
        store.put('user-1', {'a': 1})
        store.put('user-2', {'a': 2})
        assert store.get('user-1') == {'a': 1}
        assert store.get('user-2') == {'a': 2}

    def test_returned_record_is_a_copy(self, store):
        store.put('default', {'a': [1, 2]})
        record = store.get('default')
        record['a'].append(3)
        assert store.get('default') == {'a': [1, 2]}

    def test_sqlite_persists_across_instances(self, tmp_path):
        path = str(tmp_path / 'settings.db')
        SqliteSettingsStore(path).put('default', {'bias': 0.1 + 0.2})
        assert SqliteSettingsStore(path).get('default') == {'bias': 0.1 + 0.2}


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
