"""Position sources: device GPS, trace recording and trace playback."""

import json
import subprocess
import time
from datetime import datetime
from typing import Optional

from .config import CONFIG
from .models import UserPosition


class PositionUnavailable(Exception):
    """No position could be obtained (permission denied, timeout, sensor error)"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class GPS:
    """GPS access via Termux API"""

    def __init__(self):
        self.last_location: Optional[UserPosition] = None
        self.last_error: Optional[str] = None
        self.consecutive_failures = 0

    def _fail(self, reason: str) -> None:
        self.consecutive_failures += 1
        self.last_error = reason

    def get_location(self, timeout: int = 30) -> Optional[UserPosition]:
        """Get current location using termux-location"""
        try:
            result = subprocess.run(
                ["termux-location", "-p", "gps", "-r", "once"],
                capture_output=True,
                text=True,
                timeout=timeout
            )

            if result.returncode != 0:
                stderr = result.stderr.strip() if result.stderr else ""
                if "permission" in stderr.lower():
                    self._fail("permission denied")
                else:
                    self._fail(stderr or "sensor error")
                return None

            if not result.stdout or not result.stdout.strip():
                self._fail("empty response")
                return None

            data = json.loads(result.stdout)
            location = UserPosition(
                lat=data["latitude"],
                lon=data["longitude"],
                heading=data.get("bearing"),
                accuracy=data.get("accuracy"),
                timestamp=time.time()
            )
            self.last_location = location
            self.last_error = None
            self.consecutive_failures = 0
            return location

        except subprocess.TimeoutExpired:
            self._fail("timeout")
            return None
        except (json.JSONDecodeError, KeyError):
            self._fail("malformed fix")
            return None
        except FileNotFoundError:
            self._fail("termux-location not installed")
            return None

    def get_status(self) -> str:
        """Get GPS status string"""
        if self.consecutive_failures == 0:
            acc = f", accuracy {self.last_location.accuracy:.0f}m" if self.last_location and self.last_location.accuracy else ""
            return f"GPS OK{acc}"
        else:
            return f"GPS: {self.consecutive_failures} consecutive failures ({self.last_error})"


class GPSRecorder:
    """Records GPS trace to file"""

    def __init__(self, source, record_path: str):
        self.source = source
        self.record_path = record_path
        self.trace: list[dict] = []
        self.start_time = time.time()

    @property
    def last_error(self) -> Optional[str]:
        return getattr(self.source, "last_error", None)

    def get_location(self, timeout: int = 30) -> Optional[UserPosition]:
        """Get location and record it"""
        location = self.source.get_location(timeout)

        # Record even failed attempts
        entry = {
            "elapsed": time.time() - self.start_time,
            "timestamp": time.time(),
            "location": location.to_dict() if location else None,
            "status": self.source.get_status()
        }
        self.trace.append(entry)

        return location

    def get_heading(self) -> Optional[float]:
        getter = getattr(self.source, "get_heading", None)
        return getter() if getter else None

    def get_status(self) -> str:
        return self.source.get_status()

    def save(self):
        """Save trace to file"""
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)
        print(f"GPS trace saved to {self.record_path} ({len(self.trace)} entries)")


class GPSPlayback:
    """Plays back GPS trace from file"""

    def __init__(self, playback_path: str, speed: float = 1.0):
        self.playback_path = playback_path
        self.speed = speed
        self.trace: list[dict] = []
        self.index = 0
        self.last_location: Optional[UserPosition] = None
        self.last_error: Optional[str] = None
        self.consecutive_failures = 0

        with open(playback_path) as f:
            data = json.load(f)
            self.trace = data["trace"]
        print(f"Loaded GPS trace from {playback_path} ({len(self.trace)} entries)")

    def get_location(self, timeout: int = 30) -> Optional[UserPosition]:
        """Get next location from trace sequentially"""
        if self.index >= len(self.trace):
            self.last_error = "end of trace"
            return None

        entry = self.trace[self.index]
        self.index += 1

        if entry["location"]:
            location = UserPosition.from_dict(entry["location"])
            self.last_location = location
            self.last_error = None
            self.consecutive_failures = 0
            return location
        else:
            self.consecutive_failures += 1
            self.last_error = entry.get("status") or "no fix in trace"
            return None

    def get_poll_interval(self) -> float:
        """Get the interval to wait between polls based on trace timing and speed"""
        if self.index <= 0 or self.index >= len(self.trace):
            return CONFIG["gps_poll_interval"] / self.speed

        prev_elapsed = self.trace[self.index - 1].get("elapsed", 0)
        curr_elapsed = self.trace[self.index].get("elapsed", 0)
        delta = curr_elapsed - prev_elapsed

        # Apply speed multiplier and clamp to reasonable range
        interval = delta / self.speed
        return max(0.1, min(interval, 5.0))

    def is_finished(self) -> bool:
        """Check if playback is complete"""
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        else:
            return f"Playback: {self.consecutive_failures} failures ({progress})"


class FixedPosition:
    """Stationary source for testing without a device (--lat/--lon)"""

    def __init__(self, lat: float, lon: float):
        self.position = UserPosition(lat=lat, lon=lon, accuracy=0)
        self.last_error: Optional[str] = None

    def get_location(self, timeout: int = 30) -> Optional[UserPosition]:
        return UserPosition(lat=self.position.lat, lon=self.position.lon,
                            accuracy=0, timestamp=time.time())

    def get_status(self) -> str:
        return f"Fixed position ({self.position.lat:.5f}, {self.position.lon:.5f})"
