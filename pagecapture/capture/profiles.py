"""Device profile to viewport resolution."""

from typing import Dict, Optional, Union

from ..models.capture import DeviceProfile, Viewport
from .errors import InvalidProfileError


PROFILE_PRESETS: Dict[DeviceProfile, Viewport] = {
    DeviceProfile.DESKTOP: Viewport(width=1920, height=1080),
    DeviceProfile.TABLET: Viewport(width=768, height=1024),
    DeviceProfile.MOBILE: Viewport(width=375, height=667),
}


class ProfileResolver:
    """Maps a device class or explicit dimensions to a concrete viewport."""

    def __init__(self, presets: Optional[Dict[DeviceProfile, Viewport]] = None):
        self.presets = dict(presets or PROFILE_PRESETS)

    def resolve(
        self,
        device_profile: Union[DeviceProfile, str, None] = None,
        width: Optional[int] = None,
        height: Optional[int] = None
    ) -> Viewport:
        """Resolve a viewport for a device profile.

        Args:
            device_profile: Profile name or enum; ``None`` means desktop
            width: Viewport width, required for the custom profile
            height: Viewport height, required for the custom profile

        Returns:
            Viewport for the profile. Explicit dimensions are ignored for
            preset profiles.

        Raises:
            InvalidProfileError: If the profile is unknown, or custom without
                two positive dimensions
        """
        profile = self._coerce(device_profile)

        if profile is DeviceProfile.CUSTOM:
            if not _is_positive_int(width) or not _is_positive_int(height):
                raise InvalidProfileError(
                    f"Custom profile requires positive width and height, got {width}x{height}",
                    device_profile=profile.value
                )
            return Viewport(width=width, height=height)

        return self.presets[profile]

    @staticmethod
    def _coerce(device_profile: Union[DeviceProfile, str, None]) -> DeviceProfile:
        if device_profile is None or device_profile == "":
            return DeviceProfile.DESKTOP
        if isinstance(device_profile, DeviceProfile):
            return device_profile
        try:
            return DeviceProfile(str(device_profile).lower())
        except ValueError:
            raise InvalidProfileError(
                f"Unknown device profile: {device_profile}",
                device_profile=str(device_profile)
            ) from None


def _is_positive_int(value) -> bool:
    # bool is an int subclass; True is not a dimension
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


_default_resolver = ProfileResolver()


def resolve_viewport(
    device_profile: Union[DeviceProfile, str, None] = None,
    width: Optional[int] = None,
    height: Optional[int] = None
) -> Viewport:
    """Resolve a viewport with the built-in presets."""
    return _default_resolver.resolve(device_profile, width, height)
