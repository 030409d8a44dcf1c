"""
Unit tests for audio pipeline modules.
"""

import types

import pytest # pyright: ignore[reportMissingImports]
import numpy as np

from audio_pipeline import features as features_module
from audio_pipeline.aggregation import FeatureAccumulator
from audio_pipeline.features import (
    AudioFeatures,
    FeatureExtractor,
    compute_spectral_flux,
    compute_temporal_features,
)
from audio_pipeline.processor import AudioProcessor, InsufficientSpeech, ProcessingResult
from audio_pipeline.vad import (
    EnergyVAD,
    SpeechSegment,
    VoiceActivityDetector,
    concatenate_segments,
    total_speech_duration,
)
from exceptions import InvalidAudio, RecordingTooLong, VadModelUnavailable
from utils.config_loader import merge_config


class TestSpeechSegment:
    """Test SpeechSegment dataclass."""

    def test_creation(self):
        """Test segment creation."""
        seg = SpeechSegment(1.5, 3.2, 0.95)
        assert seg.start_time == 1.5
        assert seg.end_time == 3.2
        assert seg.confidence == 0.95

    def test_duration_property(self):
        """Test duration calculation."""
        seg = SpeechSegment(10.0, 15.5, 0.9)
        assert seg.duration == 5.5

    def test_total_speech_duration(self):
        segments = [SpeechSegment(0.0, 1.0, 1.0), SpeechSegment(2.0, 2.5, 1.0)]
        assert total_speech_duration(segments) == pytest.approx(1.5)
        assert total_speech_duration([]) == 0.0

    def test_concatenate_segments(self):
        """Only samples inside segments are kept."""
        audio = np.arange(16000, dtype=np.float32)
        segments = [SpeechSegment(0.0, 0.25, 1.0), SpeechSegment(0.5, 0.75, 1.0)]
        speech = concatenate_segments(audio, 16000, segments)
        assert len(speech) == 8000
        assert speech[0] == 0.0
        assert speech[4000] == 8000.0


class TestEnergyVAD:
    """Test the energy-based fallback VAD."""

    def test_silence_yields_no_segments(self, make_silence):
        """Silent input is a valid result with zero segments."""
        vad = EnergyVAD()
        assert list(vad.iter_segments(make_silence(3.0), 16000)) == []

    def test_low_noise_yields_no_segments(self):
        """Background hiss below the absolute floor is not speech."""
        rng = np.random.default_rng(0)
        noise = (rng.standard_normal(32000) * 0.002).astype(np.float32)
        assert list(EnergyVAD().iter_segments(noise, 16000)) == []

    def test_segments_follow_speech(self, make_speech, make_silence):
        """Two utterances separated by a second of silence."""
        audio = np.concatenate([make_speech(1.5), make_silence(1.0), make_speech(1.5)])
        segments = list(EnergyVAD().iter_segments(audio, 16000))

        assert len(segments) == 2
        assert segments[0].start_time == pytest.approx(0.0, abs=0.1)
        assert segments[0].end_time == pytest.approx(1.5, abs=0.1)
        assert segments[1].start_time == pytest.approx(2.5, abs=0.1)
        assert segments[1].end_time == pytest.approx(4.0, abs=0.1)
        for seg in segments:
            assert 0.0 <= seg.confidence <= 1.0

    def test_short_gap_is_bridged(self, make_speech, make_silence):
        """A 100ms dip inside an utterance does not split it."""
        audio = np.concatenate([make_speech(1.0), make_silence(0.1), make_speech(1.0)])
        segments = list(EnergyVAD().iter_segments(audio, 16000))
        assert len(segments) == 1

    def test_short_burst_is_dropped(self, make_silence):
        """Clicks shorter than min_speech_ms are rejected."""
        t = np.arange(1600) / 16000
        burst = (0.3 * np.sin(2 * np.pi * 200 * t)).astype(np.float32)
        audio = np.concatenate([make_silence(1.0), burst, make_silence(1.0)])
        assert list(EnergyVAD().iter_segments(audio, 16000)) == []

    def test_iter_segments_is_lazy(self, make_speech):
        result = EnergyVAD().iter_segments(make_speech(1.0), 16000)
        assert isinstance(result, types.GeneratorType)


class TestVoiceActivityDetector:
    """Test backend selection and resampling."""

    def test_energy_backend(self, fast_config, make_speech):
        vad = VoiceActivityDetector(fast_config)
        segments = vad.segment(make_speech(2.0), 16000)
        assert len(segments) == 1
        assert vad.last_backend == 'energy'

    def test_falls_back_when_model_unavailable(self, monkeypatch, make_speech):
        """Silero load failure switches to the energy VAD."""
        def unavailable():
            raise VadModelUnavailable("offline")

        monkeypatch.setattr('audio_pipeline.vad._load_silero_model', unavailable)
        vad = VoiceActivityDetector({'audio': {'vad': {'backend': 'silero'}}})

        segments = vad.segment(make_speech(2.0), 16000)

        assert vad.last_backend == 'energy'
        assert len(segments) == 1

    def test_resamples_to_pipeline_rate(self, fast_config, make_speech, make_silence):
        """Segment times are in seconds regardless of the input rate."""
        audio_48k = np.concatenate([
            make_speech(1.5, sample_rate=48000),
            make_silence(1.0, sample_rate=48000),
            make_speech(1.5, sample_rate=48000),
        ])
        segments = VoiceActivityDetector(fast_config).segment(audio_48k, 48000)

        assert len(segments) == 2
        assert segments[1].start_time == pytest.approx(2.5, abs=0.1)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            VoiceActivityDetector({'audio': {'vad': {'backend': 'webrtc'}}})


class TestTemporalFeatures:
    """Test pause statistics from segment boundaries."""

    def test_pause_statistics(self):
        segments = [
            SpeechSegment(0.0, 1.0, 1.0),
            SpeechSegment(1.5, 2.5, 1.0),
            SpeechSegment(2.6, 3.0, 1.0),
        ]
        temporal = compute_temporal_features(segments, min_pause_sec=0.2)

        assert temporal.span_sec == pytest.approx(3.0)
        assert temporal.pause_ratio == pytest.approx(0.2)
        assert temporal.pause_count == 1
        assert temporal.avg_pause_duration_ms == pytest.approx(500.0)

    def test_leading_silence_not_counted(self):
        """Span starts at the first speech, not at zero."""
        temporal = compute_temporal_features([SpeechSegment(2.0, 4.0, 1.0)])
        assert temporal.pause_ratio == 0.0
        assert temporal.pause_count == 0

    def test_no_segments(self):
        temporal = compute_temporal_features([])
        assert temporal.pause_ratio == 0.0
        assert temporal.pause_count == 0
        assert temporal.avg_pause_duration_ms == 0.0


class TestSpectralFlux:
    """Test the normalized spectral flux."""

    def test_stationary_spectrum(self):
        S = np.ones((64, 10))
        assert compute_spectral_flux(S) == pytest.approx(0.0)

    def test_disjoint_spectra(self):
        S = np.array([[1.0, 0.0, 1.0], [0.0, 1.0, 0.0]])
        assert compute_spectral_flux(S) == pytest.approx(1.0)

    def test_silent_frames_ignored(self):
        S = np.zeros((64, 10))
        assert compute_spectral_flux(S) == 0.0

    def test_bounded(self):
        rng = np.random.default_rng(1)
        S = np.abs(rng.standard_normal((128, 50)))
        flux = compute_spectral_flux(S)
        assert 0.0 <= flux <= 1.0


class TestFeatureExtractor:
    """Test acoustic feature extraction."""

    def test_feature_ranges(self, fast_config, make_speech):
        """Features of a voiced signal fall in their documented ranges."""
        extraction = FeatureExtractor(fast_config).extract_detailed(make_speech(3.0), 16000)
        features = extraction.features

        assert len(features.mfcc) == 13
        assert features.rms > 0
        assert 0.0 <= features.zcr <= 1.0
        assert 0.0 <= features.spectral_flux <= 1.0
        assert features.spectral_centroid > 0
        assert features.spectral_rolloff >= features.spectral_centroid * 0.5
        assert extraction.voiced_frame_count > 0

    def test_pitch_tracks_fundamental(self, fast_config, make_speech):
        features = FeatureExtractor(fast_config).extract(make_speech(3.0, f0=150.0), 16000)
        assert features.pitch_mean == pytest.approx(150.0, abs=15.0)
        assert features.pitch_range >= 0.0

    def test_pyin_pitch(self, make_speech):
        extractor = FeatureExtractor({'audio': {'features': {'pitch_method': 'pyin'}}})
        features = extractor.extract(make_speech(2.0, f0=200.0), 16000)
        assert features.pitch_mean == pytest.approx(200.0, abs=20.0)

    def test_speech_rate_follows_syllables(self, fast_config, make_speech):
        """Faster syllable rhythm gives a higher rate estimate."""
        extractor = FeatureExtractor(fast_config)
        slow = extractor.extract(make_speech(4.0, syllable_rate=3.0), 16000)
        fast = extractor.extract(make_speech(4.0, syllable_rate=6.0), 16000)

        assert fast.speech_rate > slow.speech_rate
        assert slow.speech_rate == pytest.approx(3.0, abs=0.75)
        assert fast.speech_rate == pytest.approx(6.0, abs=1.0)

    def test_no_voiced_frames(self, monkeypatch, make_speech):
        """Unvoiced audio gives zero pitch fields, never NaN."""
        def unvoiced_pyin(y, **kwargs):
            n = 1 + len(y) // kwargs['hop_length']
            return np.full(n, np.nan), np.zeros(n, dtype=bool), np.zeros(n)

        monkeypatch.setattr(features_module.librosa, 'pyin', unvoiced_pyin)
        extractor = FeatureExtractor({'audio': {'features': {'pitch_method': 'pyin'}}})
        extraction = extractor.extract_detailed(make_speech(2.0), 16000)

        assert extraction.voiced_frame_count == 0
        assert extraction.features.pitch_mean == 0.0
        assert extraction.features.pitch_std_dev == 0.0
        assert extraction.features.pitch_range == 0.0

    def test_too_short_input(self, fast_config):
        extraction = FeatureExtractor(fast_config).extract_detailed(np.zeros(500, dtype=np.float32), 16000)
        assert extraction.features == AudioFeatures.empty()
        assert extraction.voiced_frame_count == 0

    def test_wrong_mfcc_length(self):
        values = AudioFeatures.empty().to_dict()
        values['mfcc'] = [0.0] * 12
        with pytest.raises(ValueError):
            AudioFeatures.from_dict(values)

    def test_dict_round_trip(self, make_features):
        features = make_features({'rms': 0.12, 'pause_count': 4, 'mfcc': [float(i) for i in range(13)]})
        assert AudioFeatures.from_dict(features.to_dict()) == features

    def test_unknown_pitch_method(self):
        with pytest.raises(ValueError):
            FeatureExtractor({'audio': {'features': {'pitch_method': 'crepe'}}})


class TestAudioProcessor:
    """Test per-recording processing."""

    def test_silence_is_insufficient_speech(self, fast_config, make_silence):
        """Silence is reported, not raised."""
        outcome = AudioProcessor(fast_config).process(make_silence(5.0), 16000)

        assert isinstance(outcome, InsufficientSpeech)
        assert outcome.speech_seconds == 0.0
        assert outcome.required_seconds == 3.0
        assert outcome.total_seconds == pytest.approx(5.0)

    def test_short_speech_is_insufficient(self, fast_config, make_speech, make_silence):
        audio = np.concatenate([make_speech(2.0), make_silence(2.0)])
        outcome = AudioProcessor(fast_config).process(audio, 16000)

        assert isinstance(outcome, InsufficientSpeech)
        assert outcome.speech_seconds == pytest.approx(2.0, abs=0.2)

    def test_processes_speech(self, fast_config, make_speech):
        outcome = AudioProcessor(fast_config).process(make_speech(6.0), 16000)

        assert isinstance(outcome, ProcessingResult)
        assert outcome.metadata.speech_duration_sec == pytest.approx(6.0, abs=0.3)
        assert outcome.metadata.total_duration_sec == pytest.approx(6.0)
        assert outcome.metadata.vad_backend == 'energy'
        assert outcome.metadata.processing_time_ms >= 0
        assert 0.0 < outcome.quality.quality <= 1.0
        assert outcome.voiced_frame_count > 0

    def test_pause_detected(self, fast_config, make_speech, make_silence):
        audio = np.concatenate([make_speech(2.0), make_silence(0.6), make_speech(2.0)])
        outcome = AudioProcessor(fast_config).process(audio, 16000)

        assert isinstance(outcome, ProcessingResult)
        assert outcome.features.pause_count == 1
        assert 0.05 < outcome.features.pause_ratio < 0.25

    def test_other_sample_rate(self, fast_config, make_speech):
        outcome = AudioProcessor(fast_config).process(make_speech(4.0, sample_rate=44100), 44100)

        assert isinstance(outcome, ProcessingResult)
        assert outcome.metadata.total_duration_sec == pytest.approx(4.0)
        assert outcome.metadata.sample_rate == 16000

    def test_stereo_input(self, fast_config, make_speech):
        mono = make_speech(4.0)
        outcome = AudioProcessor(fast_config).process(np.stack([mono, mono], axis=1), 16000)
        assert isinstance(outcome, ProcessingResult)

    def test_recording_too_long(self, fast_config, make_speech):
        config = merge_config(fast_config, {'audio': {'processing': {'max_duration_sec': 2}}})
        with pytest.raises(RecordingTooLong) as exc_info:
            AudioProcessor(config).process(make_speech(3.0), 16000)
        assert exc_info.value.max_duration_sec == 2

    def test_invalid_audio(self, fast_config):
        processor = AudioProcessor(fast_config)
        with pytest.raises(InvalidAudio):
            processor.process(np.zeros(0, dtype=np.float32), 16000)
        with pytest.raises(InvalidAudio):
            processor.process(np.array([0.0, np.nan, 0.1], dtype=np.float32), 16000)
        with pytest.raises(InvalidAudio):
            processor.process(np.zeros(100, dtype=np.float32), 0)


class TestFeatureAccumulator:
    """Test session-level averaging."""

    def test_empty(self):
        assert FeatureAccumulator().average() is None

    def test_weighted_average(self, make_features):
        accumulator = FeatureAccumulator()
        accumulator.add(make_features({'rms': 0.1, 'pause_count': 2, 'pitch_mean': 100.0}), weight=1.0)
        accumulator.add(make_features({'rms': 0.2, 'pause_count': 3, 'pitch_mean': 200.0}), weight=3.0)

        average = accumulator.average()
        assert average.rms == pytest.approx(0.175)
        assert average.pitch_mean == pytest.approx(175.0)
        assert average.pause_count == 5

    def test_unvoiced_utterance_skips_pitch(self, make_features):
        """Utterances without pitch don't drag the pitch average to zero."""
        accumulator = FeatureAccumulator()
        accumulator.add(make_features({'rms': 0.1, 'pitch_mean': 180.0}), weight=2.0)
        accumulator.add(make_features({'rms': 0.1}), weight=2.0)

        assert accumulator.average().pitch_mean == pytest.approx(180.0)

    def test_bad_weight_counts_as_one(self, make_features):
        accumulator = FeatureAccumulator()
        accumulator.add(make_features({'rms': 0.1}), weight=float('nan'))
        accumulator.add(make_features({'rms': 0.3}), weight=-2.0)
        assert accumulator.total_weight == 2.0
        assert accumulator.average().rms == pytest.approx(0.2)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
