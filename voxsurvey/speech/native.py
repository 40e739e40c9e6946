"""On-device backend: local microphone, local Whisper server, ElevenLabs voice."""

from voxsurvey.speech.audio_player import AudioPlayer
from voxsurvey.speech.azure_tts_client import AzureTTSClient
from voxsurvey.speech.base import RecordingSpeechProvider
from voxsurvey.speech.elevenlabs_client import ElevenLabsClient
from voxsurvey.speech.microphone import MicrophoneCapture
from voxsurvey.speech.recognizer import Recognizer
from voxsurvey.speech.synthesizer import Synthesizer
from voxsurvey.speech.types import BackendKind
from voxsurvey.speech.whisper_client import WhisperClient


class NativeSpeechProvider(RecordingSpeechProvider):
    """Speaks English through ElevenLabs and anything else through Azure."""

    def __init__(
        self,
        *,
        recognizer: Recognizer | None = None,
        synthesizers: list[Synthesizer] | None = None,
        microphone: MicrophoneCapture | None = None,
        player: AudioPlayer | None = None,
    ) -> None:
        super().__init__(
            recognizer or WhisperClient(),
            synthesizers if synthesizers is not None else [ElevenLabsClient(), AzureTTSClient()],
            microphone=microphone,
            player=player,
        )

    @property
    def kind(self) -> BackendKind:
        return BackendKind.NATIVE

    @property
    def provider_name(self) -> str:
        return "native"
