"""Error taxonomy, capability descriptor and enums for the speech subsystem."""

import re
import sys
from enum import Enum

from pydantic import BaseModel, ConfigDict

from voxsurvey.survey.models import Language


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SpeechError(Exception):
    """Base class for every failure surfaced by a speech provider."""


class NoSpeechDetected(SpeechError):
    """Nothing intelligible was captured during a listen."""


class VoiceUnavailable(SpeechError):
    """Voice cannot be used for the rest of the session."""


class PermissionDenied(VoiceUnavailable):
    """Microphone access (or backend credentials) refused."""


class DeviceUnavailable(VoiceUnavailable):
    """No usable input or output device."""


class UnsupportedFormat(VoiceUnavailable):
    """The backend rejected the captured audio format."""


class NetworkError(SpeechError):
    """A network-dependent backend could not be reached."""


class CancellationInProgress(SpeechError):
    """The operation was abandoned because a newer one replaced it."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class BackendKind(str, Enum):
    """Concrete speech provider implementations."""

    NATIVE = "native"
    CLOUD_REST = "cloud_rest"
    CLOUD_SDK = "cloud_sdk"


class Capability(str, Enum):
    """What the caller needs the backend for."""

    LISTEN = "listen"
    SPEAK = "speak"


class SpeechState(str, Enum):
    """Operational state of a speech provider."""

    ACTIVE = "active"
    DEGRADED = "degraded"
    DISABLED = "disabled"
    SPEAKING = "speaking"
    LISTENING = "listening"


# ---------------------------------------------------------------------------
# Platform capability descriptor
# ---------------------------------------------------------------------------

_MOBILE = re.compile(r"android|webos|iphone|ipad|ipod|blackberry|iemobile|opera mini")
_IOS = re.compile(r"iphone|ipad|ipod")


class PlatformDescriptor(BaseModel):
    """What the answering device can do, resolved once per session.

    Business logic never inspects the user agent; it only reads these
    capability flags.
    """

    model_config = ConfigDict(frozen=True)

    os: str
    browser: str
    mobile: bool = False
    has_native_recognition: bool = True
    has_native_synthesis: bool = True
    supports_auto_record: bool = True
    supports_voice_confirmation: bool = True
    user_agent: str = ""

    @property
    def is_ios(self) -> bool:
        return self.os == "ios"

    @property
    def poor_non_latin_support(self) -> bool:
        """Native recognizers here mangle non-Latin scripts such as Khmer."""
        return self.is_ios or self.mobile or self.browser == "safari"

    @classmethod
    def host(cls) -> "PlatformDescriptor":
        """Descriptor for the machine this process runs on (local audio devices)."""
        if sys.platform == "darwin":
            os_name = "macos"
        elif sys.platform.startswith("win"):
            os_name = "windows"
        else:
            os_name = "linux"
        return cls(os=os_name, browser="native")

    @classmethod
    def from_user_agent(cls, user_agent: str) -> "PlatformDescriptor":
        """Derive capabilities from a browser user-agent string."""
        if not user_agent:
            return cls.host()

        ua = user_agent.lower()
        mobile = bool(_MOBILE.search(ua))
        if _IOS.search(ua):
            os_name = "ios"
        elif "android" in ua:
            os_name = "android"
        elif "mac os x" in ua or "macintosh" in ua:
            os_name = "macos"
        elif "windows" in ua:
            os_name = "windows"
        else:
            os_name = "linux"

        if "edg/" in ua:
            browser = "edge"
        elif "firefox" in ua or "fxios" in ua:
            browser = "firefox"
        elif "chrome" in ua or "crios" in ua:
            browser = "chrome"
        elif "safari" in ua:
            browser = "safari"
        else:
            browser = "other"

        ios = os_name == "ios"
        return cls(
            os=os_name,
            browser=browser,
            mobile=mobile,
            has_native_recognition=not mobile and browser in ("chrome", "edge", "safari"),
            has_native_synthesis=True,
            supports_auto_record=not ios,
            supports_voice_confirmation=not ios,
            user_agent=user_agent,
        )

    def supports_native(self, language: Language) -> bool:
        if not self.has_native_recognition:
            return False
        return language == Language.EN or not self.poor_non_latin_support


LOCALES: dict[Language, str] = {
    Language.EN: "en-US",
    Language.KM: "km-KH",
}
