"""Cloud REST backend: local microphone, Azure short-audio recognition and TTS."""

from voxsurvey.speech.audio_player import AudioPlayer
from voxsurvey.speech.azure_stt_client import AzureSTTClient
from voxsurvey.speech.azure_tts_client import AzureTTSClient
from voxsurvey.speech.base import RecordingSpeechProvider
from voxsurvey.speech.microphone import MicrophoneCapture
from voxsurvey.speech.recognizer import Recognizer
from voxsurvey.speech.synthesizer import Synthesizer
from voxsurvey.speech.types import BackendKind


class CloudRestSpeechProvider(RecordingSpeechProvider):
    """Records locally and posts the finished clip to Azure."""

    def __init__(
        self,
        *,
        recognizer: Recognizer | None = None,
        synthesizers: list[Synthesizer] | None = None,
        microphone: MicrophoneCapture | None = None,
        player: AudioPlayer | None = None,
    ) -> None:
        super().__init__(
            recognizer or AzureSTTClient(),
            synthesizers if synthesizers is not None else [AzureTTSClient()],
            microphone=microphone,
            player=player,
        )

    @property
    def kind(self) -> BackendKind:
        return BackendKind.CLOUD_REST

    @property
    def provider_name(self) -> str:
        return "cloud-rest"
