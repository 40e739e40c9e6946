"""Speech provider selection — picks a backend for (platform, language, capability)."""

import logging

from voxsurvey.speech.provider import SpeechProvider
from voxsurvey.speech.types import BackendKind, Capability, PlatformDescriptor
from voxsurvey.survey.models import Language

logger = logging.getLogger(__name__)


def select_backend(
    platform: PlatformDescriptor,
    language: Language,
    capability: Capability = Capability.LISTEN,
) -> BackendKind:
    """Return the most capable backend for this platform and language.

    Pure: depends only on its arguments.

    - speak: native whenever the device can synthesize the language itself
    - listen, non-Latin script on a platform that mangles it: cloud SDK
    - listen, device has a recognizer: native
    - otherwise: cloud REST
    """
    if capability == Capability.SPEAK:
        if platform.has_native_synthesis and (
            language == Language.EN or not platform.poor_non_latin_support
        ):
            return BackendKind.NATIVE
        return BackendKind.CLOUD_REST

    if language != Language.EN and platform.poor_non_latin_support:
        return BackendKind.CLOUD_SDK
    if platform.supports_native(language):
        return BackendKind.NATIVE
    return BackendKind.CLOUD_REST


def build_provider(kind: BackendKind) -> SpeechProvider:
    """Instantiate the provider class for *kind*."""
    if kind == BackendKind.CLOUD_SDK:
        from voxsurvey.speech.cloud_sdk import CloudSdkSpeechProvider
        logger.info("Creating cloud SDK speech provider")
        return CloudSdkSpeechProvider()

    if kind == BackendKind.CLOUD_REST:
        from voxsurvey.speech.cloud_rest import CloudRestSpeechProvider
        logger.info("Creating cloud REST speech provider")
        return CloudRestSpeechProvider()

    from voxsurvey.speech.native import NativeSpeechProvider
    logger.info("Creating native speech provider")
    return NativeSpeechProvider()


async def create_speech_provider(
    platform: PlatformDescriptor,
    language: Language,
) -> SpeechProvider:
    """Select, build and start the listening backend for this session.

    Falls back to the cloud REST backend when the selected one cannot
    listen after start (e.g. the SDK is not installed).
    """
    kind = select_backend(platform, language, Capability.LISTEN)
    provider = build_provider(kind)
    await provider.start()

    if kind != BackendKind.CLOUD_REST and not provider.is_available:
        logger.warning(
            "%s backend unavailable for %s — falling back to cloud REST",
            kind.value,
            language.value,
        )
        await provider.stop()
        provider = build_provider(BackendKind.CLOUD_REST)
        await provider.start()
        provider.fallback_for = kind

    return provider


def provider_matches(
    provider: SpeechProvider | None,
    platform: PlatformDescriptor,
    language: Language,
) -> bool:
    """Whether *provider* is what :func:`create_speech_provider` would hand out now.

    A REST provider that replaced an unavailable backend still counts as a
    match for that backend, so it is not torn down and rebuilt every time.
    """
    if provider is None:
        return False
    wanted = select_backend(platform, language, Capability.LISTEN)
    return provider.kind == wanted or provider.fallback_for == wanted
