#!/usr/bin/env python3
"""
Capture example for the page capture engine.

This example renders a few URLs under different device profiles and writes
the PNGs next to this script.
"""

import asyncio
import logging
from pathlib import Path
import sys

# Add the parent directory to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pagecapture.capture import (
    CaptureEngine,
    CaptureRequest,
    DeviceProfile,
    create_engine_from_config,
)


OUTPUT_DIR = Path(__file__).parent / "captures"


async def capture_profiles():
    """Capture one URL under every preset profile."""
    print("=== Device Profile Example ===")

    engine = CaptureEngine(create_engine_from_config())
    OUTPUT_DIR.mkdir(exist_ok=True)

    async with engine.running():
        requests = [
            CaptureRequest(url="https://example.com", device_profile=profile)
            for profile in (DeviceProfile.DESKTOP, DeviceProfile.TABLET, DeviceProfile.MOBILE)
        ]
        results = await engine.capture_many(requests)

        for request, result in zip(requests, results):
            if result.is_successful:
                path = OUTPUT_DIR / f"example-{request.device_profile.value}.png"
                path.write_bytes(result.image.data)
                print(f"  {request.device_profile.value}: {result.image.size_bytes} bytes -> {path}")
            else:
                print(f"  {request.device_profile.value}: {result.error.kind.value}: {result.error.message}")

        print(f"\nStats: {engine.get_stats()}")


async def capture_without_redirects():
    """Capture a redirecting URL without following the redirect."""
    print("\n=== Redirect Policy Example ===")

    async with CaptureEngine(create_engine_from_config()) as engine:
        result = await engine.capture(CaptureRequest(
            url="http://github.com",
            follow_redirects=False
        ))

        if result.is_successful:
            print(f"  Rendered {result.final_url} (redirect blocked: {result.redirect_blocked})")
        else:
            print(f"  Failed [{result.error.kind.value}]: {result.error.message}")
            if result.error.retryable:
                print("  This failure kind is worth retrying")


async def main():
    """Run all examples."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        await capture_profiles()
        await capture_without_redirects()
    except KeyboardInterrupt:
        print("\nExample interrupted by user")
    except Exception as e:
        print(f"\nExample failed: {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    asyncio.run(main())
